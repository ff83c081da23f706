"""Durable job queue on the relational store.

Jobs are claimed with ``SELECT ... FOR UPDATE SKIP LOCKED`` so several
workers can poll the same table without handing one job to two of them.
Delivery is at-least-once: a job whose processing fails is requeued with
backoff until it runs out of attempts.
"""

import os
import socket
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from pm_indexer.config import settings
from pm_indexer.jobs.payloads import JobPayloadError, build_payload, parse_payload
from pm_indexer.models import Job, Market
from pm_indexer.models.job import (
    JOB_STATUS_FAILED,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_QUEUED,
    JOB_STATUS_SUCCEEDED,
    JOB_TYPE_EMBED_MARKET_BATCH,
)
from pm_indexer.utils.metrics import record_job_outcome
from pm_indexer.utils.retry import compute_backoff

logger = structlog.get_logger()

RETRY_BASE_SEC = 1.0
RETRY_CAP_SEC = 60.0
MAX_ERROR_LENGTH = 2000


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def enqueue(db: Session, market_ids: Sequence[str], max_attempts: Optional[int] = None) -> Optional[Job]:
    """Add one embedding job to the session. The caller commits.

    Returns:
        The job, or None when there is nothing to embed
    """
    if not market_ids:
        return None

    job = Job(
        type=JOB_TYPE_EMBED_MARKET_BATCH,
        status=JOB_STATUS_QUEUED,
        payload=build_payload(JOB_TYPE_EMBED_MARKET_BATCH, market_ids=list(market_ids)),
        attempts=0,
        max_attempts=max_attempts or settings.job_max_attempts,
        run_at=datetime.utcnow(),
    )
    db.add(job)
    return job


def enqueue_chunked(db: Session, market_ids: Sequence[str], chunk_size: Optional[int] = None) -> List[Job]:
    """Split a long id list across several jobs. The caller commits."""
    chunk_size = chunk_size or settings.job_market_chunk_size
    ids = list(market_ids)
    jobs = []
    for i in range(0, len(ids), chunk_size):
        job = enqueue(db, ids[i:i + chunk_size])
        if job is not None:
            jobs.append(job)
    return jobs


def claim_batch(
    db: Session,
    worker_id: str,
    batch_size: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Job]:
    """Claim up to ``batch_size`` due jobs in one transaction."""
    now = now or datetime.utcnow()
    batch_size = batch_size or settings.job_batch_size

    stmt = (
        select(Job)
        .where(
            Job.status == JOB_STATUS_QUEUED,
            Job.run_at <= now,
            Job.attempts < Job.max_attempts,
        )
        .order_by(Job.run_at, Job.created_at)
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    )

    try:
        jobs = db.execute(stmt).scalars().all()
        for job in jobs:
            job.status = JOB_STATUS_PROCESSING
            job.locked_at = now
            job.locked_by = worker_id
            job.attempts = job.attempts + 1
            job.updated_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    if jobs:
        logger.info("jobs_claimed", worker_id=worker_id, count=len(jobs))
    return jobs


def mark_succeeded(db: Session, job_id: str) -> None:
    job = db.get(Job, job_id)
    job.status = JOB_STATUS_SUCCEEDED
    job.locked_at = None
    job.locked_by = None
    job.last_error = None
    db.commit()
    record_job_outcome(job.type, "succeeded")


def mark_failed(
    db: Session,
    job_id: str,
    error: BaseException,
    terminal: bool = False,
    now: Optional[datetime] = None,
) -> str:
    """Requeue with backoff, or fail for good once attempts run out.

    Returns:
        The job's new status
    """
    now = now or datetime.utcnow()
    job = db.get(Job, job_id)

    job.last_error = f"{type(error).__name__}: {error}"[:MAX_ERROR_LENGTH]
    job.locked_at = None
    job.locked_by = None
    job.updated_at = now

    if terminal or job.attempts >= job.max_attempts:
        job.status = JOB_STATUS_FAILED
        outcome = "failed"
    else:
        job.status = JOB_STATUS_QUEUED
        delay = compute_backoff(job.attempts, RETRY_BASE_SEC, RETRY_CAP_SEC)
        job.run_at = now + timedelta(seconds=delay)
        outcome = "requeued"

    db.commit()
    record_job_outcome(job.type, outcome)
    logger.warning(
        "job_failed",
        job_id=job_id,
        job_type=job.type,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        status=job.status,
        run_at=job.run_at.isoformat() if job.run_at else None,
        error=job.last_error,
    )
    return job.status


class JobProcessor:
    """Runs claimed jobs. Embedding batches are all-or-nothing."""

    def __init__(self, embedder, index):
        self.embedder = embedder
        self.index = index

    def process(self, db: Session, job: Job) -> str:
        """Run one claimed job and record its outcome.

        Returns:
            The job's new status
        """
        job_id = job.id
        job_type = job.type
        log = logger.bind(job_id=job_id, job_type=job_type, attempt=job.attempts)

        try:
            payload = parse_payload(job_type, job.payload)
            self._embed_market_batch(db, payload.market_ids)
        except JobPayloadError as e:
            db.rollback()
            log.error("job_payload_invalid", error=str(e))
            return mark_failed(db, job_id, e, terminal=True)
        except Exception as e:
            db.rollback()
            log.error("job_processing_failed", error=str(e))
            return mark_failed(db, job_id, e)

        mark_succeeded(db, job_id)
        log.info("job_succeeded")
        return JOB_STATUS_SUCCEEDED

    def _embed_market_batch(self, db: Session, market_ids: List[str]) -> None:
        markets = db.execute(select(Market).where(Market.id.in_(market_ids))).scalars().all()

        missing = set(market_ids) - {m.id for m in markets}
        if missing:
            logger.warning("job_markets_missing", missing=len(missing))
        if not markets:
            return

        embeddings = self.embedder.embed_markets(markets)
        self.index.ensure_collection()
        self.index.upsert(markets, embeddings)

        for market in markets:
            market.embedding_model = self.embedder.model_name
        db.flush()
