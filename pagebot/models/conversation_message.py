import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from pagebot.database import Base


class ConversationMessage(Base):
    """One chat-log line per sender; the table keeps its historical name."""

    __tablename__ = "conversations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sender_id = Column(Text, nullable=False)
    role = Column(Text, nullable=False)  # user, assistant
    content = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
