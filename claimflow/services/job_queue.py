"""Durable job queue over the ``jobs`` table.

Jobs are rows; a worker owns a job while the row is ``active`` and its
``locked_by`` matches the worker id. Every state change is a compare-and-set
update guarded on that ownership, so a worker that lost its job to stall
recovery cannot overwrite the outcome of the worker that picked it up next.

Retries are scheduled through ``ready_at``; the dispatch query only returns
rows whose ``ready_at`` has passed according to the queue's clock.
"""

import logging
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, func, update
from sqlalchemy.orm import Session

from claimflow.config import settings
from claimflow.errors import ConfigurationError, NotFound, is_retryable
from claimflow.models.job import Job, JobStatus
from claimflow.schemas.job import (
    JOB_PAYLOADS,
    BackoffType,
    EventKind,
    JobEvent,
    JobOptions,
    JobType,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Listener = Callable[[JobEvent], None]


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobTimeoutError(Exception):
    """The handler did not finish before the job's deadline."""

    retryable = True


class JobContext:
    """Per-attempt information handed to a job handler."""

    def __init__(self, job_id: uuid.UUID, job_type: JobType, attempt: int, timeout: float):
        self.job_id = job_id
        self.job_type = job_type
        self.attempt = attempt
        self.timeout = timeout
        self._deadline = time.monotonic() + timeout

    def remaining(self) -> float:
        """Seconds left before the queue abandons this attempt."""
        return max(0.0, self._deadline - time.monotonic())


Handler = Callable[[BaseModel, JobContext], Any]


def compute_backoff(backoff_type: str, delay: float, attempts: int) -> float:
    """Seconds to wait before the next attempt after ``attempts`` failures."""
    if BackoffType(backoff_type) == BackoffType.FIXED:
        return delay
    return delay * 2 ** (attempts - 1)


class JobQueue:
    """Typed, durable, at-least-once work queue with a thread worker pool."""

    def __init__(
        self,
        session_factory,
        clock: Clock = utcnow,
        listeners: Optional[List[Listener]] = None,
        max_attempts: Optional[int] = None,
        backoff_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        stall_interval: Optional[float] = None,
        max_stalled_count: Optional[int] = None,
        heartbeat_interval: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        """Initialize queue; unset policies fall back to settings."""
        self.session_factory = session_factory
        self.clock = clock
        self.max_attempts = max_attempts or settings.JOB_MAX_ATTEMPTS
        self.backoff_delay = settings.JOB_BACKOFF_DELAY if backoff_delay is None else backoff_delay
        self.timeout = timeout or settings.JOB_TIMEOUT
        self.stall_interval = stall_interval or settings.JOB_STALL_INTERVAL
        self.max_stalled_count = settings.JOB_MAX_STALLED_COUNT if max_stalled_count is None else max_stalled_count
        self.heartbeat_interval = heartbeat_interval or settings.JOB_HEARTBEAT_INTERVAL
        self.poll_interval = settings.WORKER_POLL_INTERVAL if poll_interval is None else poll_interval

        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.heartbeat_interval >= self.stall_interval:
            raise ConfigurationError("heartbeat_interval must be shorter than stall_interval")

        self._handlers: Dict[JobType, Handler] = {}
        self._listeners: List[Listener] = list(listeners or [])
        self._threads: List[threading.Thread] = []
        self._stop_event = threading.Event()

    # Registration

    def register_handler(self, job_type: Union[JobType, str], handler: Handler) -> None:
        """Associate the single handler for a job type."""
        job_type = JobType(job_type)
        if job_type in self._handlers:
            raise ConfigurationError(f"Handler already registered for job type {job_type.value}")
        self._handlers[job_type] = handler
        logger.info(f"Registered handler for {job_type.value}")

    def add_listener(self, listener: Listener) -> None:
        """Receive completed/failed/stalled events."""
        self._listeners.append(listener)

    # Producing

    def enqueue(
        self,
        job_type: Union[JobType, str],
        payload: Union[BaseModel, Dict[str, Any]],
        options: Optional[JobOptions] = None,
    ) -> uuid.UUID:
        """Durably record a waiting job and return its id.

        ``payload`` may be the job type's payload model or a dict validated
        against it.
        """
        job_type = JobType(job_type)
        payload_model = JOB_PAYLOADS[job_type]
        if isinstance(payload, dict):
            payload = payload_model.model_validate(payload)
        elif not isinstance(payload, payload_model):
            raise ConfigurationError(
                f"Job type {job_type.value} expects {payload_model.__name__}, got {type(payload).__name__}"
            )

        options = options or JobOptions()
        now = self.clock()
        job = Job(
            job_id=uuid.uuid4(),
            job_type=job_type.value,
            status=JobStatus.WAITING.value,
            payload=payload.model_dump(mode="json"),
            priority=options.priority,
            attempts=0,
            max_attempts=options.max_attempts or self.max_attempts,
            backoff_type=(options.backoff_type or BackoffType.EXPONENTIAL).value,
            backoff_delay=self.backoff_delay if options.backoff_delay is None else options.backoff_delay,
            timeout=options.timeout or self.timeout,
            ready_at=now + timedelta(seconds=options.delay),
            created_at=now,
            updated_at=now,
        )

        db: Session = self.session_factory()
        try:
            db.add(job)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Enqueued job {job.job_id} ({job_type.value})")
        return job.job_id

    # Consuming

    def claim_next(self, worker_id: str) -> Optional[Job]:
        """Move the next ready job to ``active`` for ``worker_id``."""
        if not self._handlers:
            return None

        now = self.clock()
        db: Session = self.session_factory()
        try:
            candidates = (
                db.query(Job.job_id)
                .filter(
                    Job.status == JobStatus.WAITING.value,
                    Job.ready_at <= now,
                    Job.job_type.in_([t.value for t in self._handlers]),
                )
                .order_by(Job.priority, Job.ready_at, Job.created_at)
                .limit(5)
                .with_for_update(skip_locked=True)
                .all()
            )

            for (job_id,) in candidates:
                result = db.execute(
                    update(Job)
                    .where(Job.job_id == job_id, Job.status == JobStatus.WAITING.value)
                    .values(
                        status=JobStatus.ACTIVE.value,
                        locked_by=worker_id,
                        heartbeat_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    db.commit()
                    job = db.get(Job, job_id, populate_existing=True)
                    logger.info(f"Worker {worker_id} claimed job {job_id} (attempt {job.attempts + 1}/{job.max_attempts})")
                    return job

            db.commit()
            return None
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def process_job(self, job: Job, worker_id: str) -> None:
        """Run the handler for a claimed job and record the outcome."""
        job_type = JobType(job.job_type)
        handler = self._handlers.get(job_type)
        if handler is None:
            self._fail(job, worker_id, ConfigurationError(f"No handler for {job.job_type}"), retryable=False)
            return

        try:
            payload = JOB_PAYLOADS[job_type].model_validate(job.payload)
        except ValidationError as e:
            logger.error(f"Job {job.job_id} has a malformed payload: {e}")
            self._fail(job, worker_id, e, retryable=False)
            return

        context = JobContext(job.job_id, job_type, job.attempts + 1, job.timeout)
        try:
            result = self._run_with_deadline(handler, payload, context, worker_id)
        except Exception as e:
            logger.error(f"Job {job.job_id} failed: {e}", exc_info=not isinstance(e, JobTimeoutError))
            self._fail(job, worker_id, e, retryable=is_retryable(e))
            return

        self._complete(job, worker_id, result)

    def _run_with_deadline(self, handler: Handler, payload: BaseModel, context: JobContext, worker_id: str) -> Any:
        """Run ``handler`` on its own thread, heartbeating until it returns or the deadline passes.

        A handler still running at the deadline is abandoned; its thread is a
        daemon and whatever it writes later must be guarded by the handler.
        """
        outcome: Dict[str, Any] = {}

        def target():
            try:
                outcome["result"] = handler(payload, context)
            except BaseException as e:  # re-raised in the worker thread below
                outcome["error"] = e

        thread = threading.Thread(target=target, name=f"job-{context.job_id}", daemon=True)
        thread.start()

        while True:
            remaining = context.remaining()
            thread.join(min(self.heartbeat_interval, remaining) if remaining > 0 else 0)
            if not thread.is_alive():
                break
            if context.remaining() <= 0:
                raise JobTimeoutError(f"Job {context.job_id} timed out after {context.timeout}s")
            self._heartbeat(context.job_id, worker_id)

        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("result")

    def _heartbeat(self, job_id: uuid.UUID, worker_id: str) -> None:
        now = self.clock()
        db: Session = self.session_factory()
        try:
            db.execute(
                update(Job)
                .where(Job.job_id == job_id, Job.status == JobStatus.ACTIVE.value, Job.locked_by == worker_id)
                .values(heartbeat_at=now)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Heartbeat for job {job_id} failed: {e}")
        finally:
            db.close()

    def _owned_update(
        self,
        job_id: uuid.UUID,
        worker_id: str,
        values: Dict[str, Any],
        heartbeat_before: Optional[datetime] = None,
    ) -> bool:
        """Apply ``values`` only if ``worker_id`` still owns the active job."""
        conditions = [Job.job_id == job_id, Job.status == JobStatus.ACTIVE.value, Job.locked_by == worker_id]
        if heartbeat_before is not None:
            conditions.append(Job.heartbeat_at < heartbeat_before)

        db: Session = self.session_factory()
        try:
            result = db.execute(
                update(Job)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _complete(self, job: Job, worker_id: str, result: Any) -> None:
        if isinstance(result, BaseModel):
            result = result.model_dump(mode="json")
        elif result is not None and not isinstance(result, dict):
            result = {"value": result}

        now = self.clock()
        attempts = job.attempts + 1
        applied = self._owned_update(
            job.job_id,
            worker_id,
            {
                "status": JobStatus.COMPLETED.value,
                "attempts": attempts,
                "result": result,
                "last_error": None,
                "locked_by": None,
                "finished_at": now,
                "updated_at": now,
            },
        )
        if not applied:
            logger.warning(f"Worker {worker_id} lost job {job.job_id} before completing it; result discarded")
            return

        logger.info(f"Job {job.job_id} completed successfully")
        self._emit(EventKind.COMPLETED, job, attempts, result=result)

    def _fail(self, job: Job, worker_id: str, error: BaseException, retryable: bool) -> None:
        now = self.clock()
        attempts = job.attempts + 1
        message = f"{type(error).__name__}: {error}"

        if retryable and attempts < job.max_attempts:
            delay = compute_backoff(job.backoff_type, job.backoff_delay, attempts)
            applied = self._owned_update(
                job.job_id,
                worker_id,
                {
                    "status": JobStatus.WAITING.value,
                    "attempts": attempts,
                    "last_error": message,
                    "locked_by": None,
                    "ready_at": now + timedelta(seconds=delay),
                    "updated_at": now,
                },
            )
            if applied:
                logger.warning(f"Job {job.job_id} retry {attempts}/{job.max_attempts} in {delay:.1f}s")
            else:
                logger.warning(f"Worker {worker_id} lost job {job.job_id} before recording its failure")
            return

        applied = self._owned_update(
            job.job_id,
            worker_id,
            {
                "status": JobStatus.FAILED.value,
                "attempts": attempts,
                "last_error": message,
                "locked_by": None,
                "finished_at": now,
                "updated_at": now,
            },
        )
        if not applied:
            logger.warning(f"Worker {worker_id} lost job {job.job_id} before recording its failure")
            return

        logger.error(f"Job {job.job_id} failed after {attempts} attempt(s): {message}")
        self._emit(EventKind.FAILED, job, attempts, error=message)

    # Stall recovery

    def check_stalled(self) -> int:
        """Return jobs whose worker stopped heartbeating to the waiting set.

        Returns:
            Number of stalled jobs requeued or failed by this call
        """
        now = self.clock()
        threshold = now - timedelta(seconds=self.stall_interval)

        db: Session = self.session_factory()
        try:
            stalled = (
                db.query(Job)
                .filter(Job.status == JobStatus.ACTIVE.value, Job.heartbeat_at < threshold)
                .all()
            )
        finally:
            db.close()

        recovered = 0
        for job in stalled:
            stalled_count = job.stalled_count + 1
            if stalled_count > self.max_stalled_count:
                message = "job stalled more than allowable limit"
                values = {
                    "status": JobStatus.FAILED.value,
                    "stalled_count": stalled_count,
                    "last_error": message,
                    "locked_by": None,
                    "finished_at": now,
                    "updated_at": now,
                }
            else:
                values = {
                    "status": JobStatus.WAITING.value,
                    "stalled_count": stalled_count,
                    "locked_by": None,
                    "ready_at": now,
                    "updated_at": now,
                }

            if not self._owned_update(job.job_id, job.locked_by, values, heartbeat_before=threshold):
                continue
            recovered += 1

            if values["status"] == JobStatus.FAILED.value:
                logger.error(f"Job {job.job_id} stalled {stalled_count} times, failing it")
                self._emit(EventKind.FAILED, job, job.attempts, error=values["last_error"])
            else:
                logger.warning(f"Job {job.job_id} stalled on worker {job.locked_by}, returned to queue")
                self._emit(EventKind.STALLED, job, job.attempts)

        return recovered

    # Events

    def _emit(self, kind: EventKind, job: Job, attempts: int, result=None, error: Optional[str] = None) -> None:
        event = JobEvent(
            kind=kind,
            job_id=job.job_id,
            job_type=JobType(job.job_type),
            payload=job.payload or {},
            attempts=attempts,
            result=result,
            error=error,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener for {kind.value} event of job {job.job_id} failed: {e}", exc_info=True)

    # Pool

    def start(self, concurrency: Optional[int] = None) -> None:
        """Launch ``concurrency`` worker threads."""
        from claimflow.worker import Worker

        if concurrency is None:
            concurrency = settings.WORKER_CONCURRENCY
        if concurrency < 1:
            raise ConfigurationError("concurrency must be at least 1")
        if not self._handlers:
            raise ConfigurationError("No job handlers registered")
        if self._threads:
            raise ConfigurationError("Queue already started")

        self._stop_event.clear()
        for index in range(concurrency):
            worker = Worker(self, worker_id=f"{uuid.uuid4().hex[:8]}-{index}", stop_event=self._stop_event)
            thread = threading.Thread(target=worker.run, name=f"claimflow-worker-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Started {concurrency} worker(s)")

    def stop(self, timeout: float = 10.0) -> None:
        """Signal workers to stop and wait for them."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Workers stopped")

    def run_until_idle(self, worker_id: str = "inline", max_jobs: Optional[int] = None) -> int:
        """Process ready jobs in the calling thread until none is left.

        Returns:
            Number of jobs processed
        """
        processed = 0
        while max_jobs is None or processed < max_jobs:
            job = self.claim_next(worker_id)
            if job is None:
                break
            self.process_job(job, worker_id)
            processed += 1
        return processed

    # Observability

    def get_job(self, job_id: Union[str, uuid.UUID]) -> Job:
        """Load a job or raise ``NotFound``."""
        try:
            key = job_id if isinstance(job_id, uuid.UUID) else uuid.UUID(str(job_id))
        except ValueError:
            raise NotFound(f"Job {job_id} not found")

        db: Session = self.session_factory()
        try:
            job = db.get(Job, key)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            return job
        finally:
            db.close()

    def counts(self) -> Dict[str, int]:
        """Number of jobs per status."""
        db: Session = self.session_factory()
        try:
            rows = db.query(Job.status, func.count(Job.job_id)).group_by(Job.status).all()
        finally:
            db.close()
        counts = {status.value: 0 for status in JobStatus}
        counts.update({status: count for status, count in rows})
        return counts

    def clean(self, older_than: timedelta) -> int:
        """Delete terminal jobs that finished before ``now - older_than``."""
        cutoff = self.clock() - older_than
        db: Session = self.session_factory()
        try:
            result = db.execute(
                delete(Job)
                .where(
                    Job.status.in_([JobStatus.COMPLETED.value, JobStatus.FAILED.value]),
                    Job.finished_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            logger.info(f"Removed {result.rowcount} finished job(s)")
            return result.rowcount
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
