import uuid

from sqlalchemy import Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from pagebot.database import Base


class HumanTakeoverSession(Base):
    __tablename__ = "human_takeover_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_sender_id = Column(Text, nullable=False, unique=True)
    started_at = Column(TIMESTAMP(timezone=True))
    last_human_message_at = Column(TIMESTAMP(timezone=True))
    timeout_minutes = Column(Integer, default=5)
    created_at = Column(TIMESTAMP(timezone=True))
