"""Claim and verdict Pydantic schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ClaimCreate(BaseModel):
    """Schema for submitting a claim."""

    user_id: str
    text: str = Field(..., min_length=1)
    title: Optional[str] = None
    category: str = "general"
    source_url: Optional[str] = None


class AnalyzerResult(BaseModel):
    """Structured preliminary verdict returned by the analyzer."""

    verdict: str = Field(..., min_length=1)
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    explanation: str = ""
    evidence_sources: List[str] = Field(default_factory=list)


class VerdictEdit(BaseModel):
    """Reviewer changes to an AI verdict; omitted fields keep their value."""

    verdict: Optional[str] = None
    explanation: Optional[str] = None
    evidence_sources: Optional[List[str]] = None


class HumanVerdictCreate(BaseModel):
    """Verdict written by a reviewer without the analyzer."""

    verdict: str = Field(..., min_length=1)
    explanation: str = ""
    evidence_sources: List[str] = Field(default_factory=list)


class ReviewRequest(BaseModel):
    """Reviewer identity for approve requests."""

    reviewer_id: str


class EditRequest(ReviewRequest):
    """Edit request body."""

    changes: VerdictEdit


class HumanVerdictRequest(ReviewRequest):
    """Independent verdict request body."""

    verdict: HumanVerdictCreate


class RejectRequest(ReviewRequest):
    """Reject request body."""

    reason: str = Field(..., min_length=1)


class AIVerdictResponse(BaseModel):
    """AI verdict as shown to reviewers and submitters."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    verdict: str
    confidence_score: Optional[float] = None
    explanation: Optional[str] = None
    evidence_sources: Optional[List[str]] = None
    ai_model_version: Optional[str] = None
    disclaimer: Optional[str] = None
    is_edited_by_human: bool
    edited_by_reviewer_id: Optional[str] = None
    edited_at: Optional[datetime] = None


class VerdictResponse(BaseModel):
    """Human verdict response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reviewer_id: str
    verdict: str
    explanation: Optional[str] = None
    evidence_sources: Optional[List[str]] = None
    responsibility: str
    is_final: bool


class ClaimResponse(BaseModel):
    """Claim with its verdicts and resolved responsibility."""

    id: UUID
    user_id: str
    title: Optional[str] = None
    text: str
    category: Optional[str] = None
    status: str
    assigned_reviewer_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    last_error: Optional[str] = None
    responsibility: Optional[str] = None
    verdict_kind: str = "none"
    ai_verdict: Optional[AIVerdictResponse] = None
    human_verdict: Optional[VerdictResponse] = None
    created_at: Optional[datetime] = None
