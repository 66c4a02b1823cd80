"""Notification inbox model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Text, Uuid

from claimflow.database import Base


class Notification(Base):
    """A message for a user about one of their claims."""

    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    type = Column(Text, nullable=False)  # 'claim_ai_processed', 'claim_approved', 'claim_rejected'
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(Text)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("idx_notifications_user_id", "user_id"),)
