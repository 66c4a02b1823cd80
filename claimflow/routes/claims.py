"""Claim routes."""

import logging
import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from claimflow.pipeline import Pipeline
from claimflow.routes.deps import get_pipeline
from claimflow.schemas.claim import (
    ClaimCreate,
    ClaimResponse,
    EditRequest,
    HumanVerdictRequest,
    RejectRequest,
    ReviewRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/claims", tags=["claims"])


@router.post("", response_model=ClaimResponse, status_code=201)
def submit_claim(data: ClaimCreate, pipeline: Pipeline = Depends(get_pipeline)):
    """Submit a claim for verification."""
    claim = pipeline.workflow.submit_claim(
        user_id=data.user_id,
        text=data.text,
        title=data.title,
        category=data.category,
        source_url=data.source_url,
    )
    return pipeline.workflow.get_claim_view(claim.id)


@router.get("/attention")
def list_needs_attention(limit: int = 50, pipeline: Pipeline = Depends(get_pipeline)) -> List[Dict[str, Any]]:
    """Pending claims whose automated analysis failed."""
    return [
        {
            "claim_id": str(c.id),
            "text": c.text,
            "last_error": c.last_error,
            "created_at": c.created_at.isoformat() if c.created_at else None,
        }
        for c in pipeline.workflow.needs_attention(limit=limit)
    ]


@router.get("/{claim_id}", response_model=ClaimResponse)
def get_claim(claim_id: uuid.UUID, pipeline: Pipeline = Depends(get_pipeline)):
    """Claim with its verdicts and responsibility."""
    return pipeline.workflow.get_claim_view(claim_id)


@router.post("/{claim_id}/approve")
def approve_ai_verdict(claim_id: uuid.UUID, data: ReviewRequest, pipeline: Pipeline = Depends(get_pipeline)):
    """Approve the AI verdict unchanged."""
    return pipeline.workflow.approve_ai_verdict(claim_id, data.reviewer_id)


@router.post("/{claim_id}/edit")
def edit_ai_verdict(claim_id: uuid.UUID, data: EditRequest, pipeline: Pipeline = Depends(get_pipeline)):
    """Edit the AI verdict; responsibility moves to the organization."""
    return pipeline.workflow.edit_ai_verdict(claim_id, data.reviewer_id, data.changes)


@router.post("/{claim_id}/verdict", status_code=201)
def create_human_verdict(claim_id: uuid.UUID, data: HumanVerdictRequest, pipeline: Pipeline = Depends(get_pipeline)):
    """Write an independent reviewer verdict."""
    return pipeline.workflow.create_human_verdict(claim_id, data.reviewer_id, data.verdict)


@router.post("/{claim_id}/reject")
def reject_claim(claim_id: uuid.UUID, data: RejectRequest, pipeline: Pipeline = Depends(get_pipeline)):
    """Reject a claim with a reason."""
    return pipeline.workflow.reject(claim_id, data.reviewer_id, data.reason)
