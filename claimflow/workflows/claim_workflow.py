"""Claim processing workflow.

1. A user submits a claim; it is stored as ``pending`` and queued for analysis.
2. A worker runs the analyzer and stores an AI verdict carrying a disclaimer.
3. A reviewer approves the AI verdict (responsibility stays with the AI),
   edits it (disclaimer removed, responsibility moves to the organization),
   writes an independent verdict, or rejects the claim.

Every transition is a guarded write in the claim store; when two reviewers
act on the same claim at once, the one whose write lands second gets
``InvalidState``.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from claimflow.config import settings
from claimflow.errors import ConfigurationError, InvalidState
from claimflow.models.claim import Claim, ClaimStatus, can_transition
from claimflow.schemas.claim import (
    AIVerdictResponse,
    ClaimResponse,
    HumanVerdictCreate,
    VerdictEdit,
    VerdictResponse,
)
from claimflow.schemas.job import AIProcessingPayload, EventKind, JobEvent, JobOptions, JobType
from claimflow.schemas.notification import NotificationRequest
from claimflow.services.authorship import (
    Responsibility,
    check_disclaimer_invariant,
    human_edit_fields,
    new_ai_verdict_fields,
    resolve_responsibility,
    verdict_kind,
)
from claimflow.services.job_queue import JobContext, utcnow

logger = logging.getLogger(__name__)

AWAITING_ANALYSIS = (ClaimStatus.PENDING, ClaimStatus.AI_PROCESSING)


class ClaimWorkflow:
    """Owns the claim state machine and the responsibility-transfer rule."""

    def __init__(
        self,
        store,
        analyzer,
        notifier,
        queue=None,
        clock=utcnow,
        model_version: Optional[str] = None,
        disclaimer: Optional[str] = None,
    ):
        """
        Initialize the workflow.

        Args:
            store: ClaimStore
            analyzer: Object with ``analyze(claim_text, timeout=None)``
            notifier: Object with ``notify(NotificationRequest)``
            queue: JobQueue used by ``submit_claim``
            clock: Returns naive UTC datetimes
            model_version: Tag stored on AI verdicts
            disclaimer: Text attached to unedited AI verdicts
        """
        self.store = store
        self.analyzer = analyzer
        self.notifier = notifier
        self.queue = queue
        self.clock = clock
        self.model_version = model_version or settings.ANALYZER_MODEL_VERSION
        self.disclaimer = disclaimer or settings.AI_DISCLAIMER

    # Submission

    def submit_claim(
        self,
        user_id: str,
        text: str,
        title: Optional[str] = None,
        category: str = "general",
        source_url: Optional[str] = None,
        options: Optional[JobOptions] = None,
    ) -> Claim:
        """Store a pending claim and queue it for AI analysis."""
        if self.queue is None:
            raise ConfigurationError("ClaimWorkflow needs a queue to accept submissions")

        claim = self.store.create_claim(
            {
                "user_id": user_id,
                "text": text,
                "title": title,
                "category": category,
                "source_url": source_url,
            }
        )
        job_id = self.queue.enqueue(
            JobType.AI_PROCESSING,
            AIProcessingPayload(claim_id=claim.id, claim_text=claim.text),
            options,
        )
        logger.info(f"Claim {claim.id} submitted by {user_id}, analysis job {job_id}")
        return claim

    # Automated analysis

    def process_new_claim(self, claim_id, claim_text: Optional[str] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Analyze a pending claim and store the AI verdict.

        Safe to run more than once for the same claim: when the claim already
        left the analysis stage, or another attempt wrote its verdict first,
        nothing is written.

        Raises:
            NotFound: Claim does not exist
            TransientAnalyzerError / PermanentAnalyzerError: From the analyzer
        """
        claim = self.store.find_claim(claim_id)
        if claim.status not in AWAITING_ANALYSIS or claim.ai_verdict_id is not None:
            logger.info(f"Claim {claim.id} already {claim.status}, skipping AI processing")
            return self._processing_result(claim.id, claim.ai_verdict_id, claim.status, skipped=True)

        logger.info(f"Starting automatic AI processing for claim {claim.id}")
        result = self.analyzer.analyze(claim_text or claim.text, timeout=timeout)

        fields = new_ai_verdict_fields(result, self.model_version, self.disclaimer)
        verdict = self.store.record_ai_verdict(claim.id, fields)
        if verdict is None:
            current = self.store.find_claim(claim.id)
            logger.warning(f"Discarded late AI verdict for claim {claim.id} (now {current.status})")
            return self._processing_result(current.id, current.ai_verdict_id, current.status, skipped=True)

        self._notify(
            claim,
            "claim_ai_processed",
            "Your claim has been processed by AI",
            "We've provided an initial AI-generated response to your claim. A fact-checker will review it soon.",
        )
        logger.info(f"AI processing completed for claim {claim.id}: {result.verdict} ({result.confidence_score:.2f})")
        return self._processing_result(claim.id, verdict.id, ClaimStatus.AI_PROCESSED.value)

    def _processing_result(self, claim_id, ai_verdict_id, status: str, skipped: bool = False) -> Dict[str, Any]:
        return {
            "claim_id": str(claim_id),
            "ai_verdict_id": str(ai_verdict_id) if ai_verdict_id else None,
            "claim_status": status,
            "skipped": skipped,
        }

    def handle_ai_processing(self, payload: AIProcessingPayload, context: JobContext) -> Dict[str, Any]:
        """Queue handler for ``ai-processing`` jobs."""
        logger.info(f"Processing claim {payload.claim_id} (job {context.job_id}, attempt {context.attempt})")
        return self.process_new_claim(payload.claim_id, payload.claim_text, timeout=context.remaining())

    def record_processing_failure(self, event: JobEvent) -> None:
        """Queue listener: keep the last analysis error on a claim whose job failed for good."""
        if event.kind != EventKind.FAILED or event.job_type != JobType.AI_PROCESSING:
            return

        claim_id = event.payload.get("claim_id")
        recorded = self.store.transition(claim_id, AWAITING_ANALYSIS, {"last_error": event.error})
        if recorded:
            logger.warning(f"Claim {claim_id} needs manual attention: {event.error}")
        else:
            logger.info(f"Claim {claim_id} moved on before its analysis failure was recorded")

    # Reviewer operations

    def approve_ai_verdict(self, claim_id, reviewer_id: str) -> Dict[str, Any]:
        """Publish the AI verdict unchanged; the disclaimer and AI responsibility stay."""
        logger.info(f"Reviewer {reviewer_id} approving AI verdict for claim {claim_id}")

        claim = self.store.find_claim(claim_id)
        if claim.ai_verdict_id is None:
            raise InvalidState(f"Claim {claim.id} has no AI verdict")
        if claim.status != ClaimStatus.AI_PROCESSED:
            raise InvalidState(f"Claim {claim.id} is {claim.status}, expected {ClaimStatus.AI_PROCESSED.value}")

        won = self.store.transition(
            claim.id,
            [ClaimStatus.AI_PROCESSED],
            {"status": ClaimStatus.APPROVED.value, "assigned_reviewer_id": reviewer_id},
            require_ai_verdict=True,
        )
        if not won:
            raise InvalidState(f"Claim {claim.id} was changed by another review")

        self._notify(
            claim,
            "claim_approved",
            "Your claim has been verified",
            "A fact-checker has reviewed and approved the AI response to your claim.",
        )
        logger.info(f"AI verdict approved for claim {claim.id}")
        return {
            "claim_id": str(claim.id),
            "status": ClaimStatus.APPROVED.value,
            "responsibility": Responsibility.AI.value,
        }

    def edit_ai_verdict(self, claim_id, reviewer_id: str, edited_fields: Union[VerdictEdit, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Overwrite the AI verdict with the reviewer's version and approve the claim.

        The disclaimer is removed and responsibility moves to the organization.
        A verdict that was already edited may be edited again; it never gets
        its disclaimer back.
        """
        edit = edited_fields if isinstance(edited_fields, VerdictEdit) else VerdictEdit.model_validate(edited_fields)
        logger.info(f"Reviewer {reviewer_id} editing AI verdict for claim {claim_id}")

        claim = self.store.find_claim(claim_id)
        if claim.human_verdict_id is not None:
            raise InvalidState(f"Claim {claim.id} already has an independent human verdict")
        if claim.ai_verdict_id is None:
            raise InvalidState(f"Claim {claim.id} has no AI verdict")

        fields = human_edit_fields(edit, reviewer_id, self.clock())
        if claim.status == ClaimStatus.AI_PROCESSED:
            applied = self.store.apply_edit(
                claim.id,
                claim.ai_verdict_id,
                [ClaimStatus.AI_PROCESSED],
                {"status": ClaimStatus.APPROVED.value, "assigned_reviewer_id": reviewer_id},
                fields,
            )
        elif claim.status == ClaimStatus.APPROVED:
            applied = self.store.apply_edit(
                claim.id,
                claim.ai_verdict_id,
                [ClaimStatus.APPROVED],
                {"assigned_reviewer_id": reviewer_id},
                fields,
                require_edited=True,
            )
        else:
            raise InvalidState(f"Claim {claim.id} is {claim.status}; its AI verdict cannot be edited")

        if not applied:
            raise InvalidState(f"Claim {claim.id} was approved without edits or changed by another review")

        self._notify(
            claim,
            "claim_approved",
            "Your claim has been verified",
            "A fact-checker has reviewed and updated the verdict for your claim.",
        )
        logger.info(f"AI verdict edited for claim {claim.id}, responsibility transferred to the organization")
        return {
            "claim_id": str(claim.id),
            "status": ClaimStatus.APPROVED.value,
            "responsibility": Responsibility.ORGANIZATION.value,
            "edited_by": reviewer_id,
        }

    def create_human_verdict(
        self, claim_id, reviewer_id: str, verdict_data: Union[HumanVerdictCreate, Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Approve a claim with a reviewer-written verdict; any AI verdict stays as history."""
        data = verdict_data if isinstance(verdict_data, HumanVerdictCreate) else HumanVerdictCreate.model_validate(verdict_data)
        logger.info(f"Reviewer {reviewer_id} creating human verdict for claim {claim_id}")

        claim = self.store.find_claim(claim_id)
        if not can_transition(claim.status, ClaimStatus.APPROVED):
            raise InvalidState(f"Claim {claim.id} is already {claim.status}")

        verdict = self.store.attach_human_verdict(
            claim.id,
            [ClaimStatus.PENDING, ClaimStatus.AI_PROCESSING, ClaimStatus.AI_PROCESSED],
            {
                "reviewer_id": reviewer_id,
                "verdict": data.verdict,
                "explanation": data.explanation,
                "evidence_sources": list(data.evidence_sources),
                "responsibility": Responsibility.ORGANIZATION.value,
                "is_final": True,
            },
            {"status": ClaimStatus.APPROVED.value, "assigned_reviewer_id": reviewer_id},
        )
        if verdict is None:
            raise InvalidState(f"Claim {claim.id} was changed by another review")

        self._notify(
            claim,
            "claim_approved",
            "Your claim has been verified",
            "A fact-checker has provided a verdict for your claim.",
        )
        logger.info(f"Human verdict {verdict.id} created for claim {claim.id}")
        return {
            "claim_id": str(claim.id),
            "verdict_id": str(verdict.id),
            "status": ClaimStatus.APPROVED.value,
            "responsibility": Responsibility.ORGANIZATION.value,
        }

    def reject(self, claim_id, reviewer_id: str, reason: str) -> Dict[str, Any]:
        """Close a pending or AI-processed claim without a verdict."""
        logger.info(f"Reviewer {reviewer_id} rejecting claim {claim_id}")

        claim = self.store.find_claim(claim_id)
        allowed = [ClaimStatus.PENDING, ClaimStatus.AI_PROCESSED]
        if claim.status not in allowed:
            raise InvalidState(f"Claim {claim.id} is {claim.status} and cannot be rejected")

        won = self.store.transition(
            claim.id,
            allowed,
            {
                "status": ClaimStatus.REJECTED.value,
                "assigned_reviewer_id": reviewer_id,
                "rejection_reason": reason,
            },
        )
        if not won:
            raise InvalidState(f"Claim {claim.id} was changed by another review")

        self._notify(
            claim,
            "claim_rejected",
            "Your claim was not verified",
            f"A fact-checker reviewed your claim and closed it: {reason}",
        )
        logger.info(f"Claim {claim.id} rejected")
        return {"claim_id": str(claim.id), "status": ClaimStatus.REJECTED.value, "reason": reason}

    # Reads

    def get_claim_view(self, claim_id) -> ClaimResponse:
        """Claim with both verdicts and the party responsible for the outcome."""
        claim = self.store.find_claim(claim_id)
        ai_verdict = self.store.find_ai_verdict(claim.ai_verdict_id) if claim.ai_verdict_id else None
        human_verdict = self.store.find_verdict(claim.human_verdict_id) if claim.human_verdict_id else None
        if ai_verdict is not None:
            check_disclaimer_invariant(ai_verdict)

        responsibility = resolve_responsibility(ai_verdict, human_verdict)
        return ClaimResponse(
            id=claim.id,
            user_id=claim.user_id,
            title=claim.title,
            text=claim.text,
            category=claim.category,
            status=claim.status,
            assigned_reviewer_id=claim.assigned_reviewer_id,
            rejection_reason=claim.rejection_reason,
            last_error=claim.last_error,
            responsibility=responsibility.value if responsibility else None,
            verdict_kind=verdict_kind(claim, ai_verdict).value,
            ai_verdict=AIVerdictResponse.model_validate(ai_verdict) if ai_verdict else None,
            human_verdict=VerdictResponse.model_validate(human_verdict) if human_verdict else None,
            created_at=claim.created_at,
        )

    def needs_attention(self, limit: int = 50) -> List[Claim]:
        """Pending claims whose automated analysis gave up."""
        return self.store.list_claims(status=ClaimStatus.PENDING, with_error=True, limit=limit)

    # Notifications

    def _notify(self, claim: Claim, notification_type: str, title: str, message: str) -> None:
        """Send a notification to the submitter; delivery failures never affect the claim."""
        try:
            self.notifier.notify(
                NotificationRequest(
                    user_id=claim.user_id,
                    type=notification_type,
                    title=title,
                    message=message,
                    related_id=str(claim.id),
                )
            )
        except Exception as e:
            logger.error(f"Notification {notification_type} for claim {claim.id} failed: {e}", exc_info=True)
