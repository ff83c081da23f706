#!/usr/bin/env python3
"""Run the sync scheduler as a standalone service."""

import argparse
import signal
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pm_indexer.sync.orchestrator import SyncInProgressError, SyncRunError
from pm_indexer.utils.logging import configure_logging
from pm_indexer.workers.scheduler import SyncScheduler, trigger_full_sync, trigger_incremental_sync
import structlog

logger = structlog.get_logger()

# Global scheduler instance
scheduler = None


def signal_handler(sig, frame):
    """Handle shutdown signal."""
    logger.info("shutdown_signal_received", signal=sig)
    if scheduler:
        scheduler.stop()
    sys.exit(0)


def run_once(full: bool) -> int:
    """Run a single sync and return a process exit code."""
    trigger = trigger_full_sync if full else trigger_incremental_sync
    try:
        result = trigger()
    except SyncInProgressError:
        logger.warning("sync_skipped_in_progress")
        return 2
    except SyncRunError as e:
        logger.error("sync_degraded", status=e.status, errors=e.errors)
        return 1

    logger.info("sync_once_complete", result=result.to_dict())
    return 0


def main():
    """Run sync scheduler."""
    global scheduler

    parser = argparse.ArgumentParser(description="Market sync scheduler")
    parser.add_argument("--once", action="store_true", help="Run one incremental sync and exit")
    parser.add_argument("--full", action="store_true", help="With --once, run a full sync")
    args = parser.parse_args()

    configure_logging()

    if args.once:
        sys.exit(run_once(args.full))

    # Register signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("sync_scheduler_starting")

    try:
        scheduler = SyncScheduler()
        scheduler.run_continuous()
    except Exception as e:
        logger.error("sync_scheduler_failed", error=str(e))
        sys.exit(1)

    logger.info("sync_scheduler_exited")


if __name__ == "__main__":
    main()
