"""Embedding job worker."""

import time
from typing import Optional

import structlog

from pm_indexer.config import settings
from pm_indexer.jobs.queue import JobProcessor, claim_batch, default_worker_id
from pm_indexer.models import SessionLocal

logger = structlog.get_logger()


def build_processor() -> JobProcessor:
    from pm_indexer.normalization.embedding_generator import get_embedding_generator
    from pm_indexer.search.vector_index import get_vector_index

    return JobProcessor(get_embedding_generator(), get_vector_index())


def run_job_worker_once(
    worker_id: Optional[str] = None,
    processor: Optional[JobProcessor] = None,
    session_factory=SessionLocal,
    batch_size: Optional[int] = None,
) -> int:
    """Claim one batch of due jobs and process each.

    Job failures are recorded on the job, never raised.

    Returns:
        Number of jobs claimed
    """
    worker_id = worker_id or default_worker_id()
    processor = processor or build_processor()

    with session_factory() as db:
        try:
            jobs = claim_batch(db, worker_id, batch_size or settings.job_batch_size)
        except Exception as e:
            logger.error("job_claim_failed", worker_id=worker_id, error=str(e))
            return 0

        for job in jobs:
            try:
                processor.process(db, job)
            except Exception as e:
                # Recording the failure itself failed; the claim stays and the job is retried later
                db.rollback()
                logger.error("job_outcome_not_recorded", job_id=job.id, error=str(e))

    return len(jobs)


class JobWorker:
    """Polls the job table until stopped."""

    def __init__(self, worker_id: Optional[str] = None, processor: Optional[JobProcessor] = None):
        self.worker_id = worker_id or default_worker_id()
        self.processor = processor or build_processor()
        self.running = False

    def run_continuous(self, poll_sec: Optional[float] = None):
        """Run continuous job loop."""
        poll_sec = poll_sec or settings.job_worker_poll_sec
        logger.info("job_worker_start", worker_id=self.worker_id, poll_sec=poll_sec)
        self.running = True

        while self.running:
            try:
                claimed = run_job_worker_once(self.worker_id, self.processor)
            except Exception as e:
                logger.error("job_worker_error", worker_id=self.worker_id, error=str(e))
                claimed = 0

            # Drain without sleeping while there is work
            if claimed == 0:
                time.sleep(poll_sec)

        logger.info("job_worker_stopped", worker_id=self.worker_id)

    def stop(self):
        """Stop the job loop."""
        logger.info("job_worker_stop_requested", worker_id=self.worker_id)
        self.running = False
