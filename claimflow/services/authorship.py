"""Verdict authorship rules.

Responsibility for a published verdict is derived from two facts only:
an AI verdict that no human has edited belongs to the analyzer (``ai``);
an edited AI verdict or an independent human verdict belongs to the
reviewing organization (``organization``). The disclaimer on an AI verdict
is the stored signal of that split and is cleared in exactly one place,
``human_edit_fields``.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from claimflow.errors import InvariantViolation
from claimflow.schemas.claim import AnalyzerResult, VerdictEdit


class Responsibility(str, Enum):
    """Party accountable for a verdict's correctness."""

    AI = "ai"
    ORGANIZATION = "organization"


class VerdictKind(str, Enum):
    """The four authorship situations a claim can be in."""

    NONE = "none"
    AI_ONLY = "ai_only"
    AI_EDITED = "ai_edited"
    HUMAN = "human"


def resolve_responsibility(ai_verdict, human_verdict) -> Optional[Responsibility]:
    """Return who is accountable given a claim's verdict records."""
    if human_verdict is not None:
        return Responsibility.ORGANIZATION
    if ai_verdict is None:
        return None
    if ai_verdict.is_edited_by_human:
        return Responsibility.ORGANIZATION
    return Responsibility.AI


def verdict_kind(claim, ai_verdict=None) -> VerdictKind:
    """Classify a claim by the verdict records it holds."""
    if claim.human_verdict_id is not None:
        return VerdictKind.HUMAN
    if claim.ai_verdict_id is None:
        return VerdictKind.NONE
    if ai_verdict is not None and ai_verdict.is_edited_by_human:
        return VerdictKind.AI_EDITED
    return VerdictKind.AI_ONLY


def check_disclaimer_invariant(ai_verdict) -> None:
    """Raise if disclaimer presence and the edited flag disagree."""
    has_disclaimer = bool(ai_verdict.disclaimer)
    if has_disclaimer == bool(ai_verdict.is_edited_by_human):
        raise InvariantViolation(
            f"AI verdict {ai_verdict.id}: disclaimer={has_disclaimer!r} "
            f"but is_edited_by_human={ai_verdict.is_edited_by_human!r}"
        )


def new_ai_verdict_fields(result: AnalyzerResult, model_version: str, disclaimer: str) -> Dict[str, Any]:
    """Column values for a freshly analyzed, unedited AI verdict."""
    if not disclaimer:
        raise InvariantViolation("An unedited AI verdict requires a disclaimer")
    return {
        "verdict": result.verdict,
        "confidence_score": result.confidence_score,
        "explanation": result.explanation,
        "evidence_sources": list(result.evidence_sources),
        "ai_model_version": model_version,
        "disclaimer": disclaimer,
        "is_edited_by_human": False,
    }


def human_edit_fields(edit: VerdictEdit, reviewer_id: str, now: datetime) -> Dict[str, Any]:
    """Column values applied when a reviewer edits an AI verdict.

    Responsibility moves to the organization: the edited flag is set and the
    disclaimer is cleared. Nothing sets them back.
    """
    fields: Dict[str, Any] = {
        "is_edited_by_human": True,
        "disclaimer": None,
        "edited_by_reviewer_id": reviewer_id,
        "edited_at": now,
    }
    if edit.verdict is not None:
        fields["verdict"] = edit.verdict
    if edit.explanation is not None:
        fields["explanation"] = edit.explanation
    if edit.evidence_sources is not None:
        fields["evidence_sources"] = list(edit.evidence_sources)
    return fields
