"""SQLAlchemy-backed claim store.

Every public method runs in its own transaction. Lifecycle transitions are
compare-and-set updates on the claim row (``WHERE status IN (...)``) issued
before any dependent verdict write, so two concurrent reviewer operations on
one claim cannot both succeed: the loser sees zero updated rows and its
transaction is rolled back.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from claimflow.errors import InvalidState, InvariantViolation, NotFound
from claimflow.models.claim import Claim, ClaimStatus, can_transition
from claimflow.models.verdict import AIVerdict, Verdict

logger = logging.getLogger(__name__)

IdLike = Union[str, uuid.UUID]

AI_VERDICT_FIELDS = {
    "verdict",
    "confidence_score",
    "explanation",
    "evidence_sources",
    "disclaimer",
    "is_edited_by_human",
    "edited_by_reviewer_id",
    "edited_at",
}

# Only ever written together, as the human-edit pair
AUTHORSHIP_FIELDS = {"disclaimer", "is_edited_by_human"}


def as_uuid(value: IdLike) -> uuid.UUID:
    """Coerce an id to ``uuid.UUID``; malformed ids are reported as missing."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound(f"Invalid id: {value}")


def _status_values(statuses: Iterable[ClaimStatus]) -> List[str]:
    return [ClaimStatus(s).value for s in statuses]


class ClaimStore:
    """Persistence for claims and their verdicts."""

    def __init__(self, session_factory):
        """Initialize store with a sessionmaker."""
        self.session_factory = session_factory

    @contextmanager
    def _transaction(self):
        db: Session = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Reads

    def find_claim(self, claim_id: IdLike) -> Claim:
        """Load a claim or raise ``NotFound``."""
        with self._transaction() as db:
            claim = db.get(Claim, as_uuid(claim_id))
            if claim is None:
                raise NotFound(f"Claim {claim_id} not found")
            return claim

    def find_ai_verdict(self, verdict_id: IdLike) -> AIVerdict:
        """Load an AI verdict or raise ``NotFound``."""
        with self._transaction() as db:
            verdict = db.get(AIVerdict, as_uuid(verdict_id))
            if verdict is None:
                raise NotFound(f"AI verdict {verdict_id} not found")
            return verdict

    def find_verdict(self, verdict_id: IdLike) -> Verdict:
        """Load a human verdict or raise ``NotFound``."""
        with self._transaction() as db:
            verdict = db.get(Verdict, as_uuid(verdict_id))
            if verdict is None:
                raise NotFound(f"Verdict {verdict_id} not found")
            return verdict

    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        with_error: bool = False,
        limit: int = 50,
    ) -> List[Claim]:
        """List claims, oldest first."""
        with self._transaction() as db:
            query = db.query(Claim)
            if status is not None:
                query = query.filter(Claim.status == ClaimStatus(status).value)
            if with_error:
                query = query.filter(Claim.last_error.isnot(None))
            return query.order_by(Claim.created_at).limit(limit).all()

    # Plain writes

    def create_claim(self, fields: Dict[str, Any]) -> Claim:
        """Insert a new pending claim."""
        with self._transaction() as db:
            claim = Claim(**fields)
            claim.status = ClaimStatus.PENDING.value
            db.add(claim)
            db.flush()
            logger.info(f"Created claim {claim.id}")
            return claim

    def create_ai_verdict(self, fields: Dict[str, Any]) -> uuid.UUID:
        """Insert an AI verdict and return its id."""
        with self._transaction() as db:
            verdict = AIVerdict(**fields)
            db.add(verdict)
            db.flush()
            return verdict.id

    def create_verdict(self, fields: Dict[str, Any]) -> uuid.UUID:
        """Insert a human verdict and return its id."""
        with self._transaction() as db:
            verdict = Verdict(**fields)
            db.add(verdict)
            db.flush()
            return verdict.id

    def update_claim(self, claim_id: IdLike, fields: Dict[str, Any]) -> None:
        """Apply ``fields`` to a claim in one statement.

        A ``status`` change only applies from a lower-ranked status; moving a
        claim backwards raises ``InvalidState``.
        """
        claim_uuid = as_uuid(claim_id)
        conditions = [Claim.id == claim_uuid]
        if "status" in fields:
            target = ClaimStatus(fields["status"])
            fields = {**fields, "status": target.value}
            conditions.append(Claim.status.in_([s.value for s in ClaimStatus if can_transition(s, target)]))

        with self._transaction() as db:
            result = db.execute(
                update(Claim).where(*conditions).values(**fields).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = db.get(Claim, claim_uuid)
                if current is None:
                    raise NotFound(f"Claim {claim_id} not found")
                raise InvalidState(f"Claim {claim_id} cannot move from {current.status} to {fields['status']}")

    def update_ai_verdict(self, verdict_id: IdLike, fields: Dict[str, Any], editor_id: Optional[str] = None) -> None:
        """Update an AI verdict.

        The disclaimer and the edited flag only change together, as the
        human-edit pair (edited, no disclaimer). Any other write to either
        raises ``InvariantViolation``, so an edited verdict never gets its
        disclaimer back and an unedited one never loses it.
        """
        unknown = set(fields) - AI_VERDICT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update AI verdict fields: {sorted(unknown)}")
        if AUTHORSHIP_FIELDS & set(fields):
            if fields.get("is_edited_by_human") is not True or "disclaimer" not in fields or fields["disclaimer"] is not None:
                raise InvariantViolation(
                    f"AI verdict {verdict_id}: disclaimer and edited flag change only as a human edit"
                )

        with self._transaction() as db:
            verdict = db.get(AIVerdict, as_uuid(verdict_id), with_for_update=True)
            if verdict is None:
                raise NotFound(f"AI verdict {verdict_id} not found")

            for key, value in fields.items():
                setattr(verdict, key, value)
            if editor_id is not None and verdict.is_edited_by_human:
                verdict.edited_by_reviewer_id = editor_id

    # Guarded lifecycle writes

    def record_ai_verdict(self, claim_id: IdLike, fields: Dict[str, Any]) -> Optional[AIVerdict]:
        """Attach a new AI verdict and move the claim to ``ai_processed``.

        Applies only while the claim is still awaiting analysis and has no AI
        verdict; returns None otherwise (a late or duplicate result).
        """
        claim_uuid = as_uuid(claim_id)
        verdict_id = uuid.uuid4()
        with self._transaction() as db:
            result = db.execute(
                update(Claim)
                .where(
                    Claim.id == claim_uuid,
                    Claim.status.in_(_status_values([ClaimStatus.PENDING, ClaimStatus.AI_PROCESSING])),
                    Claim.ai_verdict_id.is_(None),
                )
                .values(
                    status=ClaimStatus.AI_PROCESSED.value,
                    ai_verdict_id=verdict_id,
                    last_error=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                return None

            verdict = AIVerdict(id=verdict_id, claim_id=claim_uuid, **fields)
            db.add(verdict)
            db.flush()
            return verdict

    def transition(
        self,
        claim_id: IdLike,
        from_statuses: Iterable[ClaimStatus],
        fields: Dict[str, Any],
        require_ai_verdict: bool = False,
    ) -> bool:
        """Compare-and-set a claim's status; True if this call won."""
        conditions = [
            Claim.id == as_uuid(claim_id),
            Claim.status.in_(_status_values(from_statuses)),
        ]
        if require_ai_verdict:
            conditions.append(Claim.ai_verdict_id.isnot(None))

        with self._transaction() as db:
            result = db.execute(
                update(Claim).where(*conditions).values(**fields).execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def apply_edit(
        self,
        claim_id: IdLike,
        ai_verdict_id: IdLike,
        from_statuses: Iterable[ClaimStatus],
        claim_fields: Dict[str, Any],
        verdict_fields: Dict[str, Any],
        require_edited: bool = False,
    ) -> bool:
        """Update the claim and its AI verdict together; True if applied.

        The claim row must still be in ``from_statuses``, reference
        ``ai_verdict_id`` and have no human verdict. With ``require_edited``
        the AI verdict must already carry the human-edit flag.
        """
        verdict_uuid = as_uuid(ai_verdict_id)
        with self._transaction() as db:
            claimed = db.execute(
                update(Claim)
                .where(
                    Claim.id == as_uuid(claim_id),
                    Claim.status.in_(_status_values(from_statuses)),
                    Claim.ai_verdict_id == verdict_uuid,
                    Claim.human_verdict_id.is_(None),
                )
                .values(**claim_fields)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                db.rollback()
                return False

            conditions = [AIVerdict.id == verdict_uuid]
            if require_edited:
                conditions.append(AIVerdict.is_edited_by_human.is_(True))
            edited = db.execute(
                update(AIVerdict).where(*conditions).values(**verdict_fields).execution_options(synchronize_session=False)
            )
            if edited.rowcount == 0:
                db.rollback()
                return False
            return True

    def attach_human_verdict(
        self,
        claim_id: IdLike,
        from_statuses: Iterable[ClaimStatus],
        verdict_fields: Dict[str, Any],
        claim_fields: Dict[str, Any],
    ) -> Optional[Verdict]:
        """Create a human verdict and link it to the claim; None if the claim moved on."""
        claim_uuid = as_uuid(claim_id)
        verdict_id = uuid.uuid4()
        with self._transaction() as db:
            result = db.execute(
                update(Claim)
                .where(
                    Claim.id == claim_uuid,
                    Claim.status.in_(_status_values(from_statuses)),
                    Claim.human_verdict_id.is_(None),
                )
                .values(human_verdict_id=verdict_id, **claim_fields)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                return None

            verdict = Verdict(id=verdict_id, claim_id=claim_uuid, **verdict_fields)
            db.add(verdict)
            db.flush()
            return verdict
