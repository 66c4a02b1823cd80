"""AI-authored and human-authored verdict models."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Text, Uuid

from claimflow.database import Base, JSONType


class AIVerdict(Base):
    """Preliminary verdict produced by the analyzer.

    ``disclaimer`` is present exactly while ``is_edited_by_human`` is false.
    """

    __tablename__ = "ai_verdicts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    claim_id = Column(Uuid, ForeignKey("claims.id", ondelete="CASCADE"), nullable=False, unique=True)
    verdict = Column(Text, nullable=False)
    confidence_score = Column(Float)
    explanation = Column(Text)
    evidence_sources = Column(JSONType)
    ai_model_version = Column(Text)
    disclaimer = Column(Text)
    is_edited_by_human = Column(Boolean, nullable=False, default=False)
    edited_by_reviewer_id = Column(Text)
    edited_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Verdict(Base):
    """Verdict written directly by a reviewer, bypassing the analyzer."""

    __tablename__ = "verdicts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    claim_id = Column(Uuid, ForeignKey("claims.id", ondelete="CASCADE"), nullable=False)
    reviewer_id = Column(Text, nullable=False)
    verdict = Column(Text, nullable=False)
    explanation = Column(Text)
    evidence_sources = Column(JSONType)
    responsibility = Column(Text, nullable=False, default="organization")
    is_final = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("idx_verdicts_claim_id", "claim_id"),)
