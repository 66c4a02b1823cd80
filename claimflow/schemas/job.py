"""Job queue schemas: job types, typed payloads, options and events."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Type
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobType(str, Enum):
    """Closed set of job types the queue accepts."""

    AI_PROCESSING = "ai-processing"


class AIProcessingPayload(BaseModel):
    """Payload of an ``ai-processing`` job."""

    claim_id: UUID
    claim_text: str


# Each job type carries exactly one payload model
JOB_PAYLOADS: Dict[JobType, Type[BaseModel]] = {
    JobType.AI_PROCESSING: AIProcessingPayload,
}


class BackoffType(str, Enum):
    """Delay policy between attempts."""

    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class JobOptions(BaseModel):
    """Per-job overrides of the queue defaults."""

    max_attempts: Optional[int] = Field(None, ge=1)
    backoff_type: Optional[BackoffType] = None
    backoff_delay: Optional[float] = Field(None, ge=0)
    timeout: Optional[float] = Field(None, gt=0)
    priority: int = 0
    delay: float = Field(0.0, ge=0)  # seconds before the first attempt


class EventKind(str, Enum):
    """Job lifecycle events."""

    COMPLETED = "completed"
    FAILED = "failed"
    STALLED = "stalled"


class JobEvent(BaseModel):
    """Lifecycle event delivered to queue listeners."""

    kind: EventKind
    job_id: UUID
    job_type: JobType
    payload: Dict[str, Any]
    attempts: int
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class JobResponse(BaseModel):
    """Job state for observability endpoints."""

    model_config = ConfigDict(from_attributes=True)

    job_id: UUID
    job_type: str
    status: str
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    ready_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
