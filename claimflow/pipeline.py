"""Process-level wiring of store, analyzer, notifier, queue and workflow."""

import logging
from datetime import timedelta

from claimflow.config import settings
from claimflow.schemas.job import JobType
from claimflow.services.analyzer_client import AnalyzerClient
from claimflow.services.claim_store import ClaimStore
from claimflow.services.job_queue import JobQueue
from claimflow.services.notifier import DatabaseNotifier
from claimflow.workflows.claim_workflow import ClaimWorkflow

logger = logging.getLogger(__name__)


class Pipeline:
    """The single queue and workflow owned by one process."""

    def __init__(self, store, notifier, queue, workflow, retention: timedelta):
        self.store = store
        self.notifier = notifier
        self.queue = queue
        self.workflow = workflow
        self.retention = retention


def build_pipeline(session_factory, analyzer=None, notifier=None, queue=None) -> Pipeline:
    """Create the pipeline and register the analysis handler and failure listener."""
    store = ClaimStore(session_factory)
    notifier = notifier or DatabaseNotifier(session_factory)
    queue = queue or JobQueue(session_factory)
    workflow = ClaimWorkflow(store, analyzer or AnalyzerClient(), notifier, queue=queue)

    queue.register_handler(JobType.AI_PROCESSING, workflow.handle_ai_processing)
    queue.add_listener(workflow.record_processing_failure)

    logger.info("Claim pipeline ready")
    return Pipeline(
        store=store,
        notifier=notifier,
        queue=queue,
        workflow=workflow,
        retention=timedelta(days=settings.JOB_RETENTION_DAYS),
    )
