"""SQLAlchemy ORM models."""

from claimflow.models.claim import Claim, ClaimStatus
from claimflow.models.verdict import AIVerdict, Verdict
from claimflow.models.notification import Notification
from claimflow.models.job import Job, JobStatus

__all__ = [
    "Claim",
    "ClaimStatus",
    "AIVerdict",
    "Verdict",
    "Notification",
    "Job",
    "JobStatus",
]
