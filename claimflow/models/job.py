"""Job model for the durable work queue."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Float, Index, Integer, Text, Uuid

from claimflow.database import Base, JSONType


class JobStatus(str, Enum):
    """Job lifecycle states."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(Base):
    """Job represents a queued unit of work for the worker pool."""

    __tablename__ = "jobs"

    job_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type = Column(Text, nullable=False)  # 'ai-processing'
    status = Column(Text, nullable=False)  # 'waiting', 'active', 'completed', 'failed'
    payload = Column(JSONType)
    priority = Column(Integer, nullable=False, default=0)  # lower runs first
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)
    backoff_type = Column(Text, nullable=False, default="exponential")  # 'exponential', 'fixed'
    backoff_delay = Column(Float, nullable=False)  # seconds
    timeout = Column(Float, nullable=False)  # seconds
    ready_at = Column(DateTime, nullable=False)  # earliest dispatch time
    locked_by = Column(Text)
    heartbeat_at = Column(DateTime)
    stalled_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    result = Column(JSONType)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    finished_at = Column(DateTime)

    __table_args__ = (
        Index("idx_jobs_status_ready_at", "status", "ready_at"),
        Index("idx_jobs_job_type", "job_type"),
    )
