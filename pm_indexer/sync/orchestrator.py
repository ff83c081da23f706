"""Sync orchestration: fetch, diff, embed, persist and index both sources.

One pass per source:

1. page through the upstream listing and drop duplicate source ids
2. normalize and look up the stored rows for those source ids
3. diff (inserts, price updates, records needing a new embedding)
4. embed inline, or queue embedding jobs when the job worker is enabled
5. one relational transaction for rows, price history and queued jobs
6. after commit: write vectors and refresh payloads of price-only changes
7. evaluate alerts for the touched markets

Only one sync runs at a time. An in-process lock rejects overlapping calls
cheaply; a guarded insert of a ``running`` SyncRun row rejects overlap across
processes.
"""

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import DateTime, String, exists, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pm_indexer.alerts.evaluator import AlertEvaluator
from pm_indexer.config import settings
from pm_indexer.ingestion.errors import SourceFetchError
from pm_indexer.jobs.queue import enqueue_chunked
from pm_indexer.models import Market, PriceSnapshot, SessionLocal, SyncRun
from pm_indexer.normalization.normalizer import NormalizedMarket
from pm_indexer.sync.diff import CategorizedMarkets, categorize_markets, index_existing
from pm_indexer.utils.logging import log_sync_result, summarize_errors
from pm_indexer.utils.metrics import record_source_sync, record_sync_run

logger = structlog.get_logger()

SOURCES = ("polymarket", "kalshi")


class SyncInProgressError(Exception):
    """Another sync is already running."""


@dataclass
class SyncResult:
    """Outcome of one source's pass."""

    source: str
    fetched: int = 0
    new_markets: int = 0
    updated_prices: int = 0
    content_changed: int = 0
    embeddings_generated: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0
    status: str = "success"  # "success" or "failed"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FullSyncResult:
    """Outcome of one orchestrator invocation across both sources."""

    polymarket: SyncResult
    kalshi: SyncResult
    total_duration_ms: int = 0

    @property
    def status(self) -> str:
        failed = sum(1 for r in (self.polymarket, self.kalshi) if r.status == "failed")
        if failed == 0:
            return "success"
        if failed == 1:
            return "partial"
        return "failed"

    @property
    def errors(self) -> List[str]:
        return [
            f"{r.source}: {e}"
            for r in (self.polymarket, self.kalshi)
            for e in r.errors
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "polymarket": self.polymarket.to_dict(),
            "kalshi": self.kalshi.to_dict(),
            "total_duration_ms": self.total_duration_ms,
            "status": self.status,
        }


class SyncSourceError(Exception):
    """A source pass failed; ``result`` records how far it got."""

    def __init__(self, result: SyncResult, message: str):
        self.result = result
        super().__init__(message)


class SyncRunError(Exception):
    """A sync finished partial or failed."""

    def __init__(self, status: str, result: FullSyncResult, errors: List[str]):
        self.status = status
        self.result = result
        self.errors = errors
        super().__init__(f"sync {status}: {'; '.join(errors) or 'no details'}")


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


class SyncOrchestrator:
    """Runs incremental and full syncs against both sources."""

    def __init__(
        self,
        sources: Sequence,
        embedder,
        index,
        session_factory=SessionLocal,
        alert_evaluator: Optional[AlertEvaluator] = None,
        job_worker_enabled: Optional[bool] = None,
    ):
        """Initialize orchestrator.

        Args:
            sources: Source clients (one per SOURCES entry, identified by ``SOURCE``)
            embedder: Embedding generator (``embed_markets``, ``model_name``)
            index: Vector index (``ensure_collection``, ``upsert``, ``set_payloads``)
            session_factory: Callable returning a new Session
            alert_evaluator: Alert evaluator (default: AlertEvaluator())
            job_worker_enabled: Queue embedding jobs instead of embedding inline
        """
        self.sources = {s.SOURCE: s for s in sources}
        missing = set(SOURCES) - set(self.sources)
        if missing:
            raise ValueError(f"missing source clients: {sorted(missing)}")

        self.embedder = embedder
        self.index = index
        self.session_factory = session_factory
        self.alert_evaluator = alert_evaluator or AlertEvaluator()
        self.job_worker_enabled = (
            settings.job_worker_enabled if job_worker_enabled is None else job_worker_enabled
        )
        self._lock = threading.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    def incremental_sync(self) -> FullSyncResult:
        """Sync open markets."""
        return self._run("incremental", "open")

    def full_sync(self) -> FullSyncResult:
        """Sync every market the sources list, including closed ones."""
        return self._run("full", "all")

    def _run(self, sync_type: str, upstream_status: str) -> FullSyncResult:
        if not self._lock.acquire(blocking=False):
            logger.warning("sync_rejected_in_process", sync_type=sync_type)
            raise SyncInProgressError("a sync is already running in this process")

        try:
            run_id = self._start_run(sync_type)
            log = logger.bind(sync_type=sync_type, run_id=run_id)
            log.info("sync_run_start", job_worker_enabled=self.job_worker_enabled)
            start = time.time()

            try:
                results = self._sync_sources(upstream_status)
            except Exception as e:
                # Unexpected orchestration failure: close the run before propagating
                log.error("sync_run_crashed", error=str(e))
                results = {
                    name: SyncResult(source=name, status="failed", errors=[str(e)])
                    for name in SOURCES
                }

            full = FullSyncResult(
                polymarket=results["polymarket"],
                kalshi=results["kalshi"],
                total_duration_ms=_elapsed_ms(start),
            )
            self._finish_run(run_id, full)

            log_sync_result(sync_type, run_id, full.to_dict())
            record_sync_run(sync_type, full.status, full.total_duration_ms)

            if full.status != "success":
                raise SyncRunError(full.status, full, full.errors)
            return full
        finally:
            self._lock.release()

    def _sync_sources(self, upstream_status: str) -> Dict[str, SyncResult]:
        try:
            self.index.ensure_collection()
        except Exception as e:
            logger.error("vector_collection_unavailable", error=str(e))
            return {
                name: SyncResult(source=name, status="failed", errors=[f"vector index unavailable: {e}"])
                for name in SOURCES
            }

        results: Dict[str, SyncResult] = {}
        with ThreadPoolExecutor(max_workers=len(SOURCES)) as executor:
            futures = {
                name: executor.submit(self._sync_source, self.sources[name], upstream_status)
                for name in SOURCES
            }

            # Settle both before deciding the run status
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except SyncSourceError as e:
                    results[name] = e.result
                except Exception as e:
                    logger.error("sync_source_crashed", source=name, error=str(e))
                    results[name] = SyncResult(source=name, status="failed", errors=[str(e)])
        return results

    # Durable single-flight guard

    def _start_run(self, sync_type: str) -> str:
        run_id = str(uuid.uuid4())
        now = datetime.utcnow()

        # A row orphaned by a crash may have gone stale since startup
        self.recover_stale_runs(now)

        running = select(SyncRun.id).where(SyncRun.status == "running").exists()
        stmt = insert(SyncRun).from_select(
            ["id", "type", "status", "started_at"],
            select(
                literal(run_id, String(36)),
                literal(sync_type, String(20)),
                literal("running", String(20)),
                literal(now, DateTime()),
            ).where(~running),
        )

        with self.session_factory() as db:
            try:
                inserted = db.execute(stmt).rowcount
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise SyncInProgressError("a sync is already running") from e

        if not inserted:
            logger.warning("sync_rejected_running_row", sync_type=sync_type)
            raise SyncInProgressError("a sync is already running")
        return run_id

    def _finish_run(self, run_id: str, full: FullSyncResult) -> None:
        with self.session_factory() as db:
            db.execute(
                update(SyncRun)
                .where(SyncRun.id == run_id)
                .values(
                    status=full.status,
                    ended_at=datetime.utcnow(),
                    duration_ms=full.total_duration_ms,
                    result=full.to_dict(),
                    errors=summarize_errors(full.errors, limit=20),
                )
            )
            db.commit()

    def recover_stale_runs(self, now: Optional[datetime] = None) -> int:
        """Fail ``running`` rows left behind by a crashed process.

        Returns:
            Number of runs marked failed
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=settings.sync_stale_after_minutes)

        with self.session_factory() as db:
            count = db.execute(
                update(SyncRun)
                .where(SyncRun.status == "running", SyncRun.started_at < cutoff)
                .values(status="failed", ended_at=now, errors=["abandoned: process exited mid-sync"])
            ).rowcount
            db.commit()

        if count:
            logger.warning("stale_sync_runs_recovered", count=count, cutoff=cutoff.isoformat())
        return count

    # Per-source pass

    def _sync_source(self, client, upstream_status: str) -> SyncResult:
        name = client.SOURCE
        result = SyncResult(source=name)
        start = time.time()
        log = logger.bind(source=name)

        def fail(message: str) -> SyncSourceError:
            result.status = "failed"
            result.errors.append(message)
            result.duration_ms = _elapsed_ms(start)
            record_source_sync(name, "failed", result.fetched, result.embeddings_generated)
            return SyncSourceError(result, message)

        try:
            raw_markets = self._collect(client, upstream_status)
        except SourceFetchError as e:
            raise fail(str(e)) from e
        result.fetched = len(raw_markets)

        normalized: List[NormalizedMarket] = []
        for raw in raw_markets:
            try:
                normalized.append(client.normalize_market(raw))
            except Exception as e:
                log.warning("market_normalization_failed", source_id=client.source_id(raw), error=str(e))
                result.errors.append(f"normalize {client.source_id(raw)}: {e}")

        with self.session_factory() as db:
            try:
                existing = index_existing(self._load_existing(db, name, [m.source_id for m in normalized]))
            except Exception as e:
                log.error("existing_market_lookup_failed", error=str(e))
                raise fail(f"lookup failed: {e}") from e

            diff = categorize_markets(normalized, existing)
            result.new_markets = diff.new_markets
            result.updated_prices = diff.updated_prices
            result.content_changed = diff.content_changed

            embeddings: Dict[str, List[float]] = {}
            if diff.needing_embedding and not self.job_worker_enabled:
                try:
                    embeddings = self.embedder.embed_markets(diff.needing_embedding)
                except Exception as e:
                    log.error("inline_embedding_failed", count=len(diff.needing_embedding), error=str(e))
                    raise fail(f"embedding failed: {e}") from e

            try:
                self._persist(db, name, diff, normalized, existing)
            except Exception as e:
                log.error("sync_transaction_failed", error=str(e))
                raise fail(f"transaction failed: {e}") from e

            touched = [
                replace(m, id=existing[m.source_id].id) if m.source_id in existing else m
                for m in normalized
            ]

            try:
                result.embeddings_generated = self._write_vectors(diff, embeddings, touched)
            except Exception as e:
                log.error("vector_write_failed", error=str(e))
                self._enqueue_recovery(db, name, [m.id for m in diff.needing_embedding])
                raise fail(f"vector index write failed: {e}") from e

            try:
                self.alert_evaluator.evaluate(db, diff.to_update_prices, touched)
            except Exception as e:
                log.error("alert_evaluation_failed", error=str(e))

        result.duration_ms = _elapsed_ms(start)
        record_source_sync(name, result.status, result.fetched, result.embeddings_generated)
        log.info(
            "sync_source_complete",
            fetched=result.fetched,
            new_markets=result.new_markets,
            updated_prices=result.updated_prices,
            content_changed=result.content_changed,
            embeddings_generated=result.embeddings_generated,
            deferred=self.job_worker_enabled,
            duration_ms=result.duration_ms,
        )
        return result

    def _collect(self, client, upstream_status: str) -> List[Dict[str, Any]]:
        """All raw records for this pass, first occurrence of each source id kept."""
        seen = set()
        collected = []
        duplicates = 0

        for batch in client.iter_market_batches(
            status=upstream_status,
            limit=settings.market_fetch_limit,
            exclude_sports=settings.exclude_sports,
        ):
            for raw in batch:
                source_id = client.source_id(raw)
                if source_id in seen:
                    duplicates += 1
                    continue
                seen.add(source_id)
                collected.append(raw)

        if duplicates:
            logger.info("sync_duplicate_source_ids_dropped", source=client.SOURCE, duplicates=duplicates)
        return collected

    def _load_existing(self, db: Session, source: str, source_ids: List[str]):
        rows = []
        chunk_size = settings.sync_lookup_chunk_size
        for i in range(0, len(source_ids), chunk_size):
            chunk = source_ids[i:i + chunk_size]
            rows.extend(db.execute(
                select(Market.id, Market.source_id, Market.content_hash, Market.yes_price)
                .where(Market.source == source, Market.source_id.in_(chunk))
            ).all())
        return rows

    def _persist(
        self,
        db: Session,
        source: str,
        diff: CategorizedMarkets,
        normalized: List[NormalizedMarket],
        existing: Dict,
    ) -> None:
        """Write one pass in a single transaction."""
        now = datetime.utcnow()
        embedded_by = None if self.job_worker_enabled else self.embedder.model_name

        try:
            for market in diff.to_insert:
                values = market.to_dict()
                values["embedding_model"] = embedded_by
                values["last_synced_at"] = now
                db.add(Market(**values))
            db.flush()

            if diff.to_update_prices:
                db.execute(update(Market), [
                    {
                        "id": u.id,
                        "yes_price": u.yes_price,
                        "no_price": u.no_price,
                        "volume": u.volume,
                        "volume_24h": u.volume_24h,
                        "status": u.status,
                        "last_synced_at": now,
                    }
                    for u in diff.to_update_prices
                ])

            content_updates = diff.content_updates
            if content_updates:
                db.execute(update(Market), [
                    {
                        "id": m.id,
                        "title": m.title,
                        "subtitle": m.subtitle,
                        "description": m.description,
                        "rules": m.rules,
                        "category": m.category,
                        "tags": list(m.tags),
                        "content_hash": m.content_hash,
                        "close_at": m.close_at,
                        "expires_at": m.expires_at,
                        "url": m.url,
                        "image_url": m.image_url,
                        "embedding_model": embedded_by,
                    }
                    for m in content_updates
                ])

            snapshots = [
                PriceSnapshot(
                    market_id=m.id,
                    yes_price=m.yes_price,
                    no_price=m.no_price,
                    volume=m.volume,
                    volume_24h=m.volume_24h,
                    status=m.status,
                    recorded_at=now,
                )
                for m in diff.to_insert
            ] + [
                PriceSnapshot(
                    market_id=u.id,
                    yes_price=u.yes_price,
                    no_price=u.no_price,
                    volume=u.volume,
                    volume_24h=u.volume_24h,
                    status=u.status,
                    recorded_at=now,
                )
                for u in diff.to_update_prices
            ]
            db.add_all(snapshots)

            if self.job_worker_enabled and diff.needing_embedding:
                jobs = enqueue_chunked(db, [m.id for m in diff.needing_embedding])
                logger.info("embedding_jobs_enqueued", source=source, jobs=len(jobs))

            db.commit()
        except Exception:
            db.rollback()
            raise

    def _write_vectors(
        self,
        diff: CategorizedMarkets,
        embeddings: Dict[str, List[float]],
        touched: List[NormalizedMarket],
    ) -> int:
        """Index new embeddings and refresh payloads of price-only changes."""
        written = 0
        if embeddings:
            written = self.index.upsert(diff.needing_embedding, embeddings)

        embedded_ids = {m.id for m in diff.needing_embedding}
        updated_ids = {u.id for u in diff.to_update_prices}
        price_only = [m for m in touched if m.id in updated_ids and m.id not in embedded_ids]
        if price_only:
            self.index.set_payloads(price_only)
        return written

    def _enqueue_recovery(self, db: Session, source: str, market_ids: List[str]) -> None:
        """Queue embedding work for rows committed without an indexed vector."""
        if not market_ids:
            return
        try:
            db.execute(
                update(Market).where(Market.id.in_(market_ids)).values(embedding_model=None)
            )
            jobs = enqueue_chunked(db, market_ids)
            db.commit()
            logger.warning("vector_recovery_jobs_enqueued", source=source, markets=len(market_ids), jobs=len(jobs))
        except Exception as e:
            db.rollback()
            logger.error("vector_recovery_enqueue_failed", source=source, error=str(e))


def get_sync_status(db: Session) -> Dict[str, Any]:
    """Current sync state read from the SyncRun table."""
    is_syncing = db.execute(
        select(exists().where(SyncRun.status == "running"))
    ).scalar()

    last_run = db.execute(
        select(SyncRun)
        .where(SyncRun.status != "running")
        .order_by(SyncRun.ended_at.desc())
        .limit(1)
    ).scalars().first()

    last_full = db.execute(
        select(SyncRun)
        .where(SyncRun.type == "full", SyncRun.status.in_(("success", "partial")))
        .order_by(SyncRun.ended_at.desc())
        .limit(1)
    ).scalars().first()

    return {
        "is_syncing": bool(is_syncing),
        "last_sync_time": last_run.ended_at.isoformat() if last_run and last_run.ended_at else None,
        "last_full_sync_time": last_full.ended_at.isoformat() if last_full and last_full.ended_at else None,
        "last_sync_result": last_run.result if last_run else None,
    }


# Global orchestrator instance
_orchestrator = None


def get_orchestrator() -> SyncOrchestrator:
    """Get global orchestrator wired to the live sources and index."""
    global _orchestrator
    if _orchestrator is None:
        from pm_indexer.ingestion.kalshi_client import KalshiClient
        from pm_indexer.ingestion.polymarket_client import PolymarketGammaClient
        from pm_indexer.normalization.embedding_generator import get_embedding_generator
        from pm_indexer.search.vector_index import get_vector_index

        _orchestrator = SyncOrchestrator(
            sources=[PolymarketGammaClient(), KalshiClient()],
            embedder=get_embedding_generator(),
            index=get_vector_index(),
        )
    return _orchestrator
