#!/usr/bin/env python3
"""Run the embedding job worker."""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pm_indexer.config import settings
from pm_indexer.utils.logging import configure_logging
from pm_indexer.workers.job_worker import JobWorker

if __name__ == "__main__":
    configure_logging()

    worker = JobWorker()

    try:
        worker.run_continuous(poll_sec=settings.job_worker_poll_sec)
    except KeyboardInterrupt:
        print("\nShutting down job worker...")
        worker.stop()
