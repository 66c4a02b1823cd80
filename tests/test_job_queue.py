"""Tests for the durable job queue."""

import threading
import uuid
from datetime import timedelta

import pytest
from pydantic import ValidationError

from claimflow.errors import ConfigurationError, NotFound, PermanentAnalyzerError, TransientAnalyzerError
from claimflow.models.job import Job, JobStatus
from claimflow.schemas.job import AIProcessingPayload, EventKind, JobOptions, JobType
from claimflow.services.job_queue import JobQueue, compute_backoff


def _payload(text="claim"):
    return AIProcessingPayload(claim_id=uuid.uuid4(), claim_text=text)


class Recorder:
    """Handler and listener that records what it sees."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []
        self.events = []

    def handle(self, payload, context):
        self.calls.append((payload.claim_text, context.attempt))
        outcome = self.outcomes.pop(0) if self.outcomes else {"ok": True}
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def listen(self, event):
        self.events.append(event)

    def kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture
def recorder(queue):
    recorder = Recorder()
    queue.register_handler(JobType.AI_PROCESSING, recorder.handle)
    queue.add_listener(recorder.listen)
    return recorder


def test_compute_backoff():
    """Test exponential and fixed backoff delays."""
    assert compute_backoff("exponential", 5, 1) == 5
    assert compute_backoff("exponential", 5, 2) == 10
    assert compute_backoff("exponential", 5, 3) == 20
    assert compute_backoff("fixed", 5, 3) == 5


def test_successful_job_completes(queue, recorder):
    """Test the happy path and the completed event."""
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload("hello"))

    assert queue.run_until_idle() == 1

    job = queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED.value
    assert job.attempts == 1
    assert job.result == {"ok": True}
    assert job.locked_by is None
    assert recorder.calls == [("hello", 1)]
    assert recorder.kinds() == [EventKind.COMPLETED]


def test_retry_law_with_backoff(queue, recorder, clock):
    """Test that a retryable failure is retried with exponential delay until attempts run out."""
    recorder.outcomes = [TransientAnalyzerError("busy")] * 3
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload())

    assert queue.run_until_idle() == 1
    job = queue.get_job(job_id)
    assert job.status == JobStatus.WAITING.value
    assert job.attempts == 1
    assert job.ready_at == clock() + timedelta(seconds=5)

    # Not ready until the backoff has elapsed
    assert queue.run_until_idle() == 0
    clock.advance(5)
    assert queue.run_until_idle() == 1
    assert queue.get_job(job_id).ready_at == clock() + timedelta(seconds=10)

    clock.advance(9)
    assert queue.run_until_idle() == 0
    clock.advance(1)
    assert queue.run_until_idle() == 1

    job = queue.get_job(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3
    assert "busy" in job.last_error
    assert [attempt for _, attempt in recorder.calls] == [1, 2, 3]
    assert recorder.kinds() == [EventKind.FAILED]
    assert recorder.events[0].attempts == 3


def test_non_retryable_failure_fails_immediately(queue, recorder):
    """Test that a permanent error consumes a single attempt."""
    recorder.outcomes = [PermanentAnalyzerError("empty claim")]
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload())

    queue.run_until_idle()

    job = queue.get_job(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 1
    assert len(recorder.calls) == 1
    assert recorder.events[0].error.startswith("PermanentAnalyzerError")


def test_unknown_exceptions_are_retried(queue, recorder):
    """Test that errors outside the taxonomy count as retryable."""
    recorder.outcomes = [RuntimeError("boom")]
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload())

    queue.run_until_idle()

    job = queue.get_job(job_id)
    assert job.status == JobStatus.WAITING.value
    assert job.attempts == 1


def test_job_options_override_defaults(queue, recorder, clock):
    """Test per-job attempts, fixed backoff and initial delay."""
    recorder.outcomes = [TransientAnalyzerError("busy")] * 2
    job_id = queue.enqueue(
        JobType.AI_PROCESSING,
        _payload(),
        JobOptions(max_attempts=2, backoff_type="fixed", backoff_delay=1, delay=30),
    )

    assert queue.run_until_idle() == 0
    clock.advance(30)
    assert queue.run_until_idle() == 1
    clock.advance(1)
    assert queue.run_until_idle() == 1

    job = queue.get_job(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 2


def test_timeout_counts_as_failed_attempt(session_factory, clock):
    """Test that a handler exceeding its deadline is abandoned and retried."""
    queue = JobQueue(session_factory, clock=clock, max_attempts=2, timeout=0.2, heartbeat_interval=0.05, stall_interval=30)
    release = threading.Event()
    events = []

    def slow_handler(payload, context):
        release.wait(5)
        return {"late": True}

    queue.register_handler(JobType.AI_PROCESSING, slow_handler)
    queue.add_listener(events.append)
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload())

    try:
        queue.run_until_idle()
    finally:
        release.set()

    job = queue.get_job(job_id)
    assert job.status == JobStatus.WAITING.value
    assert job.attempts == 1
    assert "JobTimeoutError" in job.last_error
    assert events == []


def test_fifo_and_priority(queue, recorder, clock):
    """Test dispatch order: lower priority value first, then oldest first."""
    queue.enqueue(JobType.AI_PROCESSING, _payload("first"))
    clock.advance(1)
    queue.enqueue(JobType.AI_PROCESSING, _payload("second"))
    clock.advance(1)
    queue.enqueue(JobType.AI_PROCESSING, _payload("urgent"), JobOptions(priority=-1))

    queue.run_until_idle()

    assert [text for text, _ in recorder.calls] == ["urgent", "first", "second"]


def test_stalled_job_is_requeued_then_failed(queue, recorder, clock):
    """Test stall recovery up to the stall limit."""
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload())

    queue.claim_next("dead-worker")
    clock.advance(31)
    assert queue.check_stalled() == 1

    job = queue.get_job(job_id)
    assert job.status == JobStatus.WAITING.value
    assert job.stalled_count == 1
    assert recorder.kinds() == [EventKind.STALLED]

    queue.claim_next("another-dead-worker")
    clock.advance(31)
    assert queue.check_stalled() == 1

    job = queue.get_job(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.last_error == "job stalled more than allowable limit"
    assert recorder.kinds() == [EventKind.STALLED, EventKind.FAILED]
    assert recorder.calls == []


def test_stalled_count_skips_jobs_that_resumed(queue, recorder, clock, monkeypatch):
    """Test that a job whose worker heartbeats during recovery is not counted."""
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload())
    queue.claim_next("slow-worker")
    clock.advance(31)

    owned_update = queue._owned_update

    def heartbeat_first(job_id, worker_id, values, heartbeat_before=None):
        queue._heartbeat(job_id, worker_id)
        return owned_update(job_id, worker_id, values, heartbeat_before=heartbeat_before)

    monkeypatch.setattr(queue, "_owned_update", heartbeat_first)

    assert queue.check_stalled() == 0
    job = queue.get_job(job_id)
    assert job.status == JobStatus.ACTIVE.value
    assert job.stalled_count == 0
    assert recorder.kinds() == []


def test_heartbeating_job_is_not_stalled(queue, recorder, clock):
    """Test that a recent heartbeat protects an active job."""
    queue.enqueue(JobType.AI_PROCESSING, _payload())
    queue.claim_next("worker-1")

    clock.advance(20)
    assert queue.check_stalled() == 0


def test_lost_ownership_discards_result(queue, recorder, clock):
    """Test that a worker whose job was recovered cannot record its outcome."""
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload())

    stale = queue.claim_next("worker-1")
    clock.advance(31)
    queue.check_stalled()
    fresh = queue.claim_next("worker-2")

    queue.process_job(stale, "worker-1")
    job = queue.get_job(job_id)
    assert job.status == JobStatus.ACTIVE.value
    assert job.locked_by == "worker-2"

    queue.process_job(fresh, "worker-2")
    assert queue.get_job(job_id).status == JobStatus.COMPLETED.value
    assert recorder.kinds() == [EventKind.STALLED, EventKind.COMPLETED]


def test_malformed_payload_fails_without_retry(queue, recorder, test_db):
    """Test a stored payload that no longer matches its model."""
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload())
    test_db.get(Job, job_id).payload = {"claim_text": "missing id"}
    test_db.commit()

    queue.run_until_idle()

    job = queue.get_job(job_id)
    assert job.status == JobStatus.FAILED.value
    assert recorder.calls == []


def test_duplicate_handler_rejected(queue, recorder):
    """Test that a job type has exactly one handler."""
    with pytest.raises(ConfigurationError):
        queue.register_handler(JobType.AI_PROCESSING, recorder.handle)


def test_invalid_queue_policies(session_factory):
    """Test construction-time validation of queue settings."""
    with pytest.raises(ConfigurationError):
        JobQueue(session_factory, heartbeat_interval=30, stall_interval=30)


def test_enqueue_checks_payload_type(queue):
    """Test that payloads are validated against the job type's model."""
    with pytest.raises(ConfigurationError):
        queue.enqueue(JobType.AI_PROCESSING, JobOptions())
    with pytest.raises(ValueError):
        queue.enqueue("unknown-job", _payload())

    job_id = queue.enqueue("ai-processing", {"claim_id": str(uuid.uuid4()), "claim_text": "dict payload"})
    assert queue.get_job(job_id).payload["claim_text"] == "dict payload"
    with pytest.raises(ValidationError):
        queue.enqueue("ai-processing", {"claim_text": "no claim id"})


def test_claim_next_without_handlers(queue):
    """Test that nothing is dispatched before a handler is registered."""
    queue.enqueue(JobType.AI_PROCESSING, _payload())
    assert queue.claim_next("worker-1") is None


def test_listener_errors_are_contained(queue, recorder):
    """Test that a failing listener does not affect the job or other listeners."""
    def broken(event):
        raise RuntimeError("listener bug")

    queue.add_listener(broken)
    job_id = queue.enqueue(JobType.AI_PROCESSING, _payload())

    queue.run_until_idle()

    assert queue.get_job(job_id).status == JobStatus.COMPLETED.value
    assert recorder.kinds() == [EventKind.COMPLETED]


def test_counts_and_clean(queue, recorder, clock):
    """Test per-status counts and removal of old finished jobs."""
    recorder.outcomes = [{"ok": True}, PermanentAnalyzerError("bad")]
    queue.enqueue(JobType.AI_PROCESSING, _payload())
    queue.enqueue(JobType.AI_PROCESSING, _payload())
    queue.run_until_idle()
    queue.enqueue(JobType.AI_PROCESSING, _payload())

    assert queue.counts() == {"waiting": 1, "active": 0, "completed": 1, "failed": 1}

    assert queue.clean(older_than=timedelta(days=7)) == 0
    clock.advance(8 * 24 * 3600)
    assert queue.clean(older_than=timedelta(days=7)) == 2
    assert queue.counts()["waiting"] == 1


def test_get_job_not_found(queue):
    """Test lookups of unknown job ids."""
    with pytest.raises(NotFound):
        queue.get_job(uuid.uuid4())
    with pytest.raises(NotFound):
        queue.get_job("nope")


def test_worker_pool_processes_jobs(queue, recorder):
    """Test that started workers drain the queue."""
    job_ids = [queue.enqueue(JobType.AI_PROCESSING, _payload(str(i))) for i in range(4)]
    done = threading.Event()

    def watch(event):
        if sum(1 for e in recorder.events if e.kind == EventKind.COMPLETED) == len(job_ids):
            done.set()

    queue.add_listener(watch)
    queue.start(concurrency=2)
    try:
        assert done.wait(10)
    finally:
        queue.stop()

    assert all(queue.get_job(j).status == JobStatus.COMPLETED.value for j in job_ids)
    with pytest.raises(ConfigurationError):
        queue.start(concurrency=0)
