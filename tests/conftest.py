"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from claimflow.database import Base, make_engine
from claimflow.schemas.claim import AnalyzerResult
from claimflow.services.claim_store import ClaimStore
from claimflow.services.job_queue import JobQueue
from claimflow.pipeline import build_pipeline
import claimflow.models  # noqa: F401


class FakeClock:
    """Manually advanced naive-UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


class FakeAnalyzer:
    """Analyzer returning scripted results; exceptions in the script are raised."""

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls = []
        self.before_return = None

    def analyze(self, claim_text, timeout=None):
        self.calls.append((claim_text, timeout))
        outcome = self.script.pop(0) if self.script else default_result()
        if isinstance(outcome, BaseException):
            raise outcome
        if self.before_return is not None:
            self.before_return()
        return outcome


class RecordingNotifier:
    """Keeps notifications in memory."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def notify(self, request):
        if self.fail:
            raise RuntimeError("mail server down")
        self.sent.append(request)

    def types(self):
        return [n.type for n in self.sent]


def default_result():
    return AnalyzerResult(
        verdict="false",
        confidence_score=0.8,
        explanation="No credible source supports this.",
        evidence_sources=["https://example.org/report"],
    )


@pytest.fixture(scope="function")
def session_factory(tmp_path):
    """File-backed SQLite database per test, shared safely across threads."""
    engine = make_engine(f"sqlite:///{tmp_path / 'claimflow-test.db'}")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

    yield TestingSessionLocal

    engine.dispose()


@pytest.fixture
def test_db(session_factory):
    """A session for direct inspection of rows."""
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store(session_factory):
    return ClaimStore(session_factory)


@pytest.fixture
def queue(session_factory, clock):
    return JobQueue(
        session_factory,
        clock=clock,
        max_attempts=3,
        backoff_delay=5,
        timeout=300,
        stall_interval=30,
        max_stalled_count=1,
        heartbeat_interval=5,
        poll_interval=0.01,
    )


@pytest.fixture
def pipeline(session_factory, analyzer, notifier, queue):
    """Pipeline wired with the fake analyzer, recording notifier and fake clock."""
    built = build_pipeline(session_factory, analyzer=analyzer, notifier=notifier, queue=queue)
    built.workflow.clock = queue.clock
    return built


@pytest.fixture
def workflow(pipeline):
    return pipeline.workflow


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)
