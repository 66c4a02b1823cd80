"""Background worker for processing queued jobs."""

import logging
import signal
import threading
import time

import sqlalchemy

from claimflow.config import settings

logger = logging.getLogger(__name__)


class Worker:
    """One member of the queue's worker pool; handles one job at a time."""

    def __init__(self, queue, worker_id: str, stop_event: threading.Event):
        """Initialize worker."""
        self.queue = queue
        self.worker_id = worker_id
        self.stop_event = stop_event
        self.poll_interval = queue.poll_interval
        # Stall sweeps run a few times per stall interval
        self.stall_check_interval = queue.stall_interval / 2
        self.jobs_processed = 0

    def run(self):
        """Main worker loop; returns once the stop event is set."""
        logger.info(f"Worker {self.worker_id} started")
        last_stall_check = 0.0

        while not self.stop_event.is_set():
            try:
                if time.monotonic() - last_stall_check >= self.stall_check_interval:
                    self.queue.check_stalled()
                    last_stall_check = time.monotonic()

                job = self.queue.claim_next(self.worker_id)
                if job:
                    self.queue.process_job(job, self.worker_id)
                    self.jobs_processed += 1
                else:
                    self.stop_event.wait(self.poll_interval)

            except Exception as e:
                logger.error(f"Worker {self.worker_id} error: {e}", exc_info=True)
                self.stop_event.wait(self.poll_interval)

        logger.info(f"Worker {self.worker_id} stopped after {self.jobs_processed} job(s)")


def wait_for_database(session_factory, max_wait: int = 60) -> bool:
    """Block until the jobs table is queryable or ``max_wait`` seconds pass."""
    waited = 0
    while waited < max_wait:
        db = session_factory()
        try:
            db.execute(sqlalchemy.text("SELECT 1 FROM jobs LIMIT 1"))
            logger.info("Database is ready")
            return True
        except Exception as e:
            logger.info(f"Waiting for database... ({waited}s): {e}")
            time.sleep(2)
            waited += 2
        finally:
            db.close()

    logger.error(f"Database not ready after {max_wait} seconds")
    return False


def main():
    """Entry point for a standalone worker process."""
    from claimflow.database import SessionLocal
    from claimflow.pipeline import build_pipeline

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    wait_for_database(SessionLocal)

    pipeline = build_pipeline(SessionLocal)
    stop_event = threading.Event()

    def shutdown_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    pipeline.queue.start(settings.WORKER_CONCURRENCY)
    try:
        while not stop_event.wait(60):
            pipeline.queue.clean(older_than=pipeline.retention)
    finally:
        pipeline.queue.stop()


if __name__ == "__main__":
    main()
