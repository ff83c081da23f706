"""Structured logging configuration and shared log helpers."""

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog

from pm_indexer.config import settings


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structlog once for the API process or a worker script.

    Args:
        log_level: Logging level (default from settings)
        log_format: "json" or "text" (default from settings)
    """
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = log_format or settings.log_format

    # Route library loggers (uvicorn, sqlalchemy, httpx) to stdout as well
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def log_sync_result(sync_type: str, run_id: str, result: Dict[str, Any]) -> None:
    """Log a finished sync run with one line per source.

    Args:
        sync_type: "incremental" or "full"
        run_id: SyncRun id
        result: FullSyncResult as a dict
    """
    status = result.get("status")
    log = logger.bind(sync_type=sync_type, run_id=run_id)

    for source in ("polymarket", "kalshi"):
        source_result = result.get(source) or {}
        log.info(
            "sync_source_result",
            source=source,
            status=source_result.get("status"),
            fetched=source_result.get("fetched", 0),
            new_markets=source_result.get("new_markets", 0),
            updated_prices=source_result.get("updated_prices", 0),
            content_changed=source_result.get("content_changed", 0),
            embeddings_generated=source_result.get("embeddings_generated", 0),
            errors=source_result.get("errors", []),
            duration_ms=source_result.get("duration_ms", 0),
        )

    event = "sync_run_complete" if status == "success" else "sync_run_degraded"
    method = log.info if status == "success" else log.warning
    method(event, status=status, total_duration_ms=result.get("total_duration_ms", 0))


def log_api_error(
    source: str,
    category: str,
    message: str,
    status_code: Optional[int] = None,
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """Log a categorized upstream API failure."""
    logger.error(
        "external_api_error",
        source=source,
        category=category,
        status_code=status_code,
        error=message,
        **(context or {}),
    )


def summarize_errors(errors: List[str], limit: int = 5) -> List[str]:
    """Trim an error list for log lines and stored run results."""
    if len(errors) <= limit:
        return list(errors)
    return list(errors[:limit]) + [f"... {len(errors) - limit} more"]
