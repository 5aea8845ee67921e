import uuid

from sqlalchemy import Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from pagebot.database import Base


class BotSettings(Base):
    __tablename__ = "bot_settings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bot_name = Column(Text, default="Assistant")
    bot_tone = Column(Text, default="helpful and professional")
    facebook_verify_token = Column(Text, default="TEST_TOKEN")
    facebook_page_access_token = Column(Text)
    human_takeover_timeout_minutes = Column(Integer, default=5)
    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))
