"""Tests for the claim store's guarded writes."""

import uuid

import pytest

from claimflow.errors import InvalidState, InvariantViolation, NotFound
from claimflow.models.claim import ClaimStatus
from claimflow.models.verdict import AIVerdict


def _verdict_fields(**overrides):
    fields = {
        "verdict": "false",
        "confidence_score": 0.8,
        "explanation": "No evidence.",
        "evidence_sources": ["https://example.org"],
        "ai_model_version": "test-model",
        "disclaimer": "AI generated",
        "is_edited_by_human": False,
    }
    fields.update(overrides)
    return fields


def _new_claim(store):
    return store.create_claim({"user_id": "user-1", "text": "The moon is made of cheese."})


def test_create_claim_is_pending(store):
    """Test that new claims always start pending."""
    claim = store.create_claim({"user_id": "user-1", "text": "x", "status": "approved"})

    assert claim.status == ClaimStatus.PENDING.value
    assert store.find_claim(claim.id).text == "x"


def test_find_claim_not_found(store):
    """Test lookups of missing and malformed ids."""
    with pytest.raises(NotFound):
        store.find_claim(uuid.uuid4())
    with pytest.raises(NotFound):
        store.find_claim("not-a-uuid")


def test_record_ai_verdict_once(store):
    """Test that only the first AI verdict for a claim is recorded."""
    claim = _new_claim(store)

    first = store.record_ai_verdict(claim.id, _verdict_fields())
    second = store.record_ai_verdict(claim.id, _verdict_fields(verdict="verified"))

    assert first is not None
    assert second is None
    stored = store.find_claim(claim.id)
    assert stored.status == ClaimStatus.AI_PROCESSED.value
    assert stored.ai_verdict_id == first.id
    assert store.find_ai_verdict(first.id).verdict == "false"


def test_record_ai_verdict_after_rejection_is_discarded(store, test_db):
    """Test that a late analysis result does not touch a closed claim."""
    claim = _new_claim(store)
    assert store.transition(claim.id, [ClaimStatus.PENDING], {"status": ClaimStatus.REJECTED.value})

    assert store.record_ai_verdict(claim.id, _verdict_fields()) is None
    assert store.find_claim(claim.id).status == ClaimStatus.REJECTED.value
    assert test_db.query(AIVerdict).count() == 0


def test_transition_compare_and_set(store):
    """Test that a transition only applies from the expected states."""
    claim = _new_claim(store)

    assert store.transition(claim.id, [ClaimStatus.PENDING], {"status": ClaimStatus.REJECTED.value})
    assert not store.transition(claim.id, [ClaimStatus.PENDING], {"status": ClaimStatus.APPROVED.value})
    assert store.find_claim(claim.id).status == ClaimStatus.REJECTED.value


def test_transition_requiring_ai_verdict(store):
    """Test the AI verdict guard on transitions."""
    claim = _new_claim(store)

    assert not store.transition(
        claim.id, [ClaimStatus.PENDING], {"status": ClaimStatus.APPROVED.value}, require_ai_verdict=True
    )


def test_apply_edit_rolls_back_claim_when_verdict_not_edited(store):
    """Test that a re-edit of a never-edited verdict leaves both rows untouched."""
    claim = _new_claim(store)
    verdict = store.record_ai_verdict(claim.id, _verdict_fields())
    store.transition(claim.id, [ClaimStatus.AI_PROCESSED], {"status": ClaimStatus.APPROVED.value})

    applied = store.apply_edit(
        claim.id,
        verdict.id,
        [ClaimStatus.APPROVED],
        {"assigned_reviewer_id": "reviewer-2"},
        {"verdict": "verified", "disclaimer": None, "is_edited_by_human": True},
        require_edited=True,
    )

    assert applied is False
    assert store.find_claim(claim.id).assigned_reviewer_id is None
    assert store.find_ai_verdict(verdict.id).disclaimer == "AI generated"


def test_attach_human_verdict(store):
    """Test linking an independent verdict and approving the claim."""
    claim = _new_claim(store)

    verdict = store.attach_human_verdict(
        claim.id,
        [ClaimStatus.PENDING],
        {"reviewer_id": "reviewer-1", "verdict": "verified"},
        {"status": ClaimStatus.APPROVED.value},
    )
    again = store.attach_human_verdict(
        claim.id,
        [ClaimStatus.PENDING, ClaimStatus.APPROVED],
        {"reviewer_id": "reviewer-2", "verdict": "false"},
        {"status": ClaimStatus.APPROVED.value},
    )

    assert verdict is not None
    assert again is None
    stored = store.find_claim(claim.id)
    assert stored.human_verdict_id == verdict.id
    assert store.find_verdict(verdict.id).responsibility == "organization"


def test_update_ai_verdict_cannot_restore_disclaimer(store):
    """Test that responsibility transfer is irreversible at the store level."""
    claim = _new_claim(store)
    verdict = store.record_ai_verdict(claim.id, _verdict_fields())
    store.update_ai_verdict(verdict.id, {"is_edited_by_human": True, "disclaimer": None}, editor_id="reviewer-1")

    with pytest.raises(InvariantViolation):
        store.update_ai_verdict(verdict.id, {"disclaimer": "AI generated"})
    with pytest.raises(InvariantViolation):
        store.update_ai_verdict(verdict.id, {"is_edited_by_human": False})

    stored = store.find_ai_verdict(verdict.id)
    assert stored.disclaimer is None
    assert stored.edited_by_reviewer_id == "reviewer-1"


def test_update_ai_verdict_rejects_unknown_fields(store):
    """Test that claim linkage cannot be changed through verdict updates."""
    claim = _new_claim(store)
    verdict = store.record_ai_verdict(claim.id, _verdict_fields())

    with pytest.raises(ValueError):
        store.update_ai_verdict(verdict.id, {"claim_id": uuid.uuid4()})


def test_update_claim_missing(store):
    """Test updating a claim that does not exist."""
    with pytest.raises(NotFound):
        store.update_claim(uuid.uuid4(), {"title": "x"})


def test_list_claims_with_error(store):
    """Test filtering pending claims that recorded an error."""
    failing = _new_claim(store)
    _new_claim(store)
    store.update_claim(failing.id, {"last_error": "TransientAnalyzerError: timeout"})

    listed = store.list_claims(status=ClaimStatus.PENDING, with_error=True)

    assert [c.id for c in listed] == [failing.id]


def test_update_ai_verdict_cannot_half_edit(store):
    """Test that the disclaimer and edited flag cannot change separately on an unedited verdict."""
    claim = _new_claim(store)
    verdict = store.record_ai_verdict(claim.id, _verdict_fields())

    with pytest.raises(InvariantViolation):
        store.update_ai_verdict(verdict.id, {"disclaimer": None})
    with pytest.raises(InvariantViolation):
        store.update_ai_verdict(verdict.id, {"is_edited_by_human": True})
    with pytest.raises(InvariantViolation):
        store.update_ai_verdict(verdict.id, {"is_edited_by_human": True, "disclaimer": "still here"})

    stored = store.find_ai_verdict(verdict.id)
    assert stored.disclaimer == "AI generated"
    assert stored.is_edited_by_human is False


def test_update_ai_verdict_plain_fields(store):
    """Test that label and explanation updates leave authorship untouched."""
    claim = _new_claim(store)
    verdict = store.record_ai_verdict(claim.id, _verdict_fields())

    store.update_ai_verdict(verdict.id, {"explanation": "Updated wording."})

    stored = store.find_ai_verdict(verdict.id)
    assert stored.explanation == "Updated wording."
    assert stored.disclaimer == "AI generated"


def test_update_claim_cannot_regress_status(store):
    """Test that update_claim only moves a claim forward."""
    claim = _new_claim(store)
    store.update_claim(claim.id, {"status": ClaimStatus.APPROVED.value})

    with pytest.raises(InvalidState):
        store.update_claim(claim.id, {"status": "pending"})
    with pytest.raises(InvalidState):
        store.update_claim(claim.id, {"status": ClaimStatus.REJECTED})

    assert store.find_claim(claim.id).status == ClaimStatus.APPROVED.value


def test_update_claim_status_missing_claim(store):
    """Test a status update on a claim that does not exist."""
    with pytest.raises(NotFound):
        store.update_claim(uuid.uuid4(), {"status": "approved"})
