import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from pagebot.database import Base


class Lead(Base):
    __tablename__ = "leads"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sender_id = Column(Text, nullable=False, unique=True)
    name = Column(Text)
    profile_pic = Column(Text)
    current_stage_id = Column(UUID(as_uuid=True), ForeignKey("pipeline_stages.id"))
    message_count = Column(Integer, default=0)
    last_message_at = Column(TIMESTAMP(timezone=True))
    last_analyzed_at = Column(TIMESTAMP(timezone=True))
    ai_classification_reason = Column(Text)
    bot_disabled = Column(Boolean, default=False)
    bot_disabled_reason = Column(Text)
    receipt_image_url = Column(Text)
    receipt_detected_at = Column(TIMESTAMP(timezone=True))
    phone = Column(Text)
    email = Column(Text)
    best_contact_times = Column(JSONB)
    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))

    stage = relationship("PipelineStage")
