"""Metrics collection backed by Redis counters and gauges."""

from typing import Dict, Optional
import structlog

from pm_indexer.config import settings
from pm_indexer.utils.cache import CacheClient, get_cache

logger = structlog.get_logger()

METRIC_TTL_SEC = 86400


def _metric_key(kind: str, metric_name: str, tags: Optional[Dict[str, str]]) -> str:
    key = f"metrics:{kind}:{metric_name}"
    if tags:
        tag_str = ":".join(f"{k}={v}" for k, v in sorted(tags.items()))
        key = f"{key}:{tag_str}"
    return key


class MetricsCollector:
    """Collect counters and gauges.

    Recording never raises: the cache client logs and swallows Redis
    failures, and a disabled collector is a no-op.
    """

    def __init__(self, cache: Optional[CacheClient] = None, enabled: Optional[bool] = None):
        self.cache = cache or get_cache()
        self.enabled = settings.metrics_enabled if enabled is None else enabled

    def increment_counter(self, metric_name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric."""
        if not self.enabled:
            return
        key = _metric_key("counter", metric_name, tags)
        self.cache.incr_with_ttl(key, value, METRIC_TTL_SEC)
        logger.debug("metric_counter_incremented", metric=metric_name, value=value, tags=tags)

    def record_gauge(self, metric_name: str, value: float, tags: Optional[Dict[str, str]] = None):
        """Record a gauge metric."""
        if not self.enabled:
            return
        key = _metric_key("gauge", metric_name, tags)
        self.cache.set(key, value, ttl=METRIC_TTL_SEC)
        logger.debug("metric_gauge_recorded", metric=metric_name, value=value, tags=tags)

    def get_counter(self, metric_name: str, tags: Optional[Dict[str, str]] = None) -> int:
        """Get counter value."""
        if not self.enabled:
            return 0
        value = self.cache.get(_metric_key("counter", metric_name, tags))
        return int(value) if value else 0


# Global metrics instance
_metrics = None


def get_metrics() -> MetricsCollector:
    """Get global metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


# Common metrics helpers
def record_sync_run(sync_type: str, status: str, duration_ms: int):
    """Record a finished sync run."""
    metrics = get_metrics()
    metrics.increment_counter("sync_runs_total", tags={"type": sync_type, "status": status})
    metrics.record_gauge("sync_last_duration_ms", duration_ms, tags={"type": sync_type})


def record_source_sync(source: str, status: str, fetched: int, embeddings: int):
    """Record one per-source sync pass."""
    metrics = get_metrics()
    metrics.increment_counter("source_syncs_total", tags={"source": source, "status": status})
    metrics.record_gauge("source_last_fetched", fetched, tags={"source": source})
    metrics.increment_counter("embeddings_generated_total", embeddings, tags={"source": source})


def record_external_api_error(source: str, category: str):
    """Record a categorized upstream failure."""
    get_metrics().increment_counter(
        "external_api_errors_total",
        tags={"source": source, "category": category},
    )


def record_job_outcome(job_type: str, outcome: str):
    """Record a job outcome (succeeded, requeued, failed)."""
    get_metrics().increment_counter("jobs_processed_total", tags={"type": job_type, "outcome": outcome})
