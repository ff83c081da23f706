"""Background sync scheduler.

Incremental syncs run every ``sync_interval_minutes``; one full sync runs per
day during ``full_sync_hour``. All scheduling uses naive UTC, the same clock
as the ``sync_runs`` timestamps.
"""

import threading
import time
from datetime import date, datetime, timedelta
from typing import Callable, Optional

import structlog

from pm_indexer.config import settings
from pm_indexer.models import SessionLocal
from pm_indexer.sync.orchestrator import (
    FullSyncResult,
    SyncInProgressError,
    SyncOrchestrator,
    SyncRunError,
    get_orchestrator,
    get_sync_status,
)

logger = structlog.get_logger()

TICK_INTERVAL_SEC = 30


def trigger_incremental_sync(orchestrator: Optional[SyncOrchestrator] = None) -> FullSyncResult:
    """Run an incremental sync now.

    Raises:
        SyncInProgressError: Another sync is running
        SyncRunError: The sync finished partial or failed
    """
    return (orchestrator or get_orchestrator()).incremental_sync()


def trigger_full_sync(orchestrator: Optional[SyncOrchestrator] = None) -> FullSyncResult:
    """Run a full sync now (same errors as ``trigger_incremental_sync``)."""
    return (orchestrator or get_orchestrator()).full_sync()


class SyncScheduler:
    """Decides when to sync and runs syncs, never letting a failure stop the loop."""

    def __init__(
        self,
        orchestrator: Optional[SyncOrchestrator] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        session_factory=SessionLocal,
    ):
        self.orchestrator = orchestrator or get_orchestrator()
        self.clock = clock
        self.session_factory = session_factory
        self.interval = timedelta(minutes=settings.sync_interval_minutes)
        self.last_incremental_at: Optional[datetime] = None
        self.last_full_sync_date: Optional[date] = None
        self.running = False

    def _load_last_full_sync(self) -> None:
        with self.session_factory() as db:
            status = get_sync_status(db)
        if status["last_full_sync_time"]:
            self.last_full_sync_date = datetime.fromisoformat(status["last_full_sync_time"]).date()

    def full_sync_due(self, now: datetime) -> bool:
        return now.hour == settings.full_sync_hour and self.last_full_sync_date != now.date()

    def incremental_due(self, now: datetime) -> bool:
        return self.last_incremental_at is None or now - self.last_incremental_at >= self.interval

    def tick(self) -> Optional[str]:
        """Run whichever sync is due.

        Returns:
            "full", "incremental", or None when nothing was due
        """
        now = self.clock()

        if self.full_sync_due(now):
            if self._run("full", trigger_full_sync):
                self.last_full_sync_date = now.date()
            self.last_incremental_at = now
            return "full"

        if self.incremental_due(now):
            self._run("incremental", trigger_incremental_sync)
            self.last_incremental_at = now
            return "incremental"

        return None

    def _run(self, sync_type: str, trigger) -> bool:
        """Run one sync; True when it completed, even if only partially."""
        try:
            trigger(self.orchestrator)
        except SyncInProgressError:
            logger.info("scheduled_sync_skipped_in_progress", sync_type=sync_type)
            return False
        except SyncRunError as e:
            logger.warning("scheduled_sync_degraded", sync_type=sync_type, status=e.status, errors=e.errors)
            return e.status != "failed"
        except Exception as e:
            logger.error("scheduled_sync_failed", sync_type=sync_type, error=str(e))
            return False
        return True

    def run_continuous(self):
        """Run the scheduler loop until ``stop`` is called."""
        logger.info(
            "sync_scheduler_start",
            interval_minutes=settings.sync_interval_minutes,
            full_sync_hour=settings.full_sync_hour,
        )

        self.orchestrator.recover_stale_runs()
        self._load_last_full_sync()
        self.running = True

        while self.running:
            try:
                self.tick()
            except Exception as e:
                logger.error("sync_scheduler_error", error=str(e))
            time.sleep(TICK_INTERVAL_SEC)

        logger.info("sync_scheduler_stopped")

    def stop(self):
        """Stop the scheduler loop."""
        logger.info("sync_scheduler_stop_requested")
        self.running = False


_scheduler = None
_scheduler_thread = None


def start_scheduler_thread() -> Optional[SyncScheduler]:
    """Start the scheduler in a daemon thread when auto-sync is enabled."""
    global _scheduler, _scheduler_thread
    if not settings.enable_auto_sync:
        logger.info("auto_sync_disabled")
        return None
    if _scheduler_thread is not None and _scheduler_thread.is_alive():
        return _scheduler

    _scheduler = SyncScheduler()
    _scheduler_thread = threading.Thread(target=_scheduler.run_continuous, name="sync-scheduler", daemon=True)
    _scheduler_thread.start()
    return _scheduler


def is_scheduler_running() -> bool:
    return _scheduler is not None and _scheduler.running


def stop_scheduler_thread() -> None:
    if _scheduler is not None:
        _scheduler.stop()
