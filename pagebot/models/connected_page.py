import uuid

from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from pagebot.database import Base


class ConnectedPage(Base):
    __tablename__ = "connected_pages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    page_id = Column(Text, nullable=False, unique=True)
    page_name = Column(Text, nullable=False)
    page_access_token = Column(Text, nullable=False)
    user_access_token = Column(Text)
    is_active = Column(Boolean, default=True)
    webhook_subscribed = Column(Boolean, default=False)
    profile_pic = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))
