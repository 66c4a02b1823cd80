"""Claim model and lifecycle states."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Index, Text, Uuid

from claimflow.database import Base


class ClaimStatus(str, Enum):
    """Claim lifecycle states."""

    PENDING = "pending"
    AI_PROCESSING = "ai_processing"  # queue dispatch window, not written by the workflow
    AI_PROCESSED = "ai_processed"
    APPROVED = "approved"
    REJECTED = "rejected"


# Partial order over states; a claim may only move to a higher rank.
STATUS_RANK = {
    ClaimStatus.PENDING: 0,
    ClaimStatus.AI_PROCESSING: 1,
    ClaimStatus.AI_PROCESSED: 2,
    ClaimStatus.APPROVED: 3,
    ClaimStatus.REJECTED: 3,
}


def can_transition(current: str, target: str) -> bool:
    """Whether ``current`` may move to ``target`` without regressing."""
    return STATUS_RANK[ClaimStatus(target)] > STATUS_RANK[ClaimStatus(current)]


class Claim(Base):
    """A user-submitted factual claim moving through verification."""

    __tablename__ = "claims"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    title = Column(Text)
    text = Column(Text, nullable=False)
    category = Column(Text, default="general")
    source_url = Column(Text)
    status = Column(Text, nullable=False, default=ClaimStatus.PENDING.value)
    # Plain references; ai_verdicts/verdicts point back with real foreign keys
    ai_verdict_id = Column(Uuid)
    human_verdict_id = Column(Uuid)
    assigned_reviewer_id = Column(Text)
    rejection_reason = Column(Text)
    last_error = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_claims_status", "status"),
        Index("idx_claims_user_id", "user_id"),
    )
