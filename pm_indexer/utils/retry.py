"""Retry policies for outbound calls and job requeue delays."""

import random
from typing import Optional, Tuple, Type

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from pm_indexer.config import settings

logger = structlog.get_logger()


def compute_backoff(
    attempt: int,
    base_sec: float = 1.0,
    cap_sec: float = 60.0,
    jitter_sec: float = 0.25,
    rng: Optional[random.Random] = None,
) -> float:
    """Delay before the next attempt: ``min(base * 2^attempt, cap)`` plus jitter."""
    delay = min(base_sec * (2 ** max(attempt, 0)), cap_sec)
    if jitter_sec > 0:
        delay += (rng or random).uniform(0, jitter_sec)
    return delay


def is_retryable_http_error(exc: BaseException) -> bool:
    """Timeouts, transport failures, 429 and 5xx are worth another attempt."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, httpx.TransportError)


def _log_before_sleep(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "outbound_call_retrying",
        function=getattr(retry_state.fn, "__name__", "unknown"),
        attempt=retry_state.attempt_number,
        sleep_sec=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
        error=str(exc) if exc else None,
    )


def http_retry(max_attempts: Optional[int] = None):
    """Retry decorator for upstream HTTP calls."""
    return retry(
        retry=retry_if_exception(is_retryable_http_error),
        stop=stop_after_attempt(max_attempts or settings.source_max_retries),
        wait=wait_exponential_jitter(
            initial=settings.source_retry_base_sec,
            max=settings.source_retry_max_sec,
            jitter=settings.source_retry_base_sec,
        ),
        before_sleep=_log_before_sleep,
        reraise=True,
    )


def store_retry(
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    max_attempts: int = 3,
):
    """Retry decorator for vector index writes and reads."""
    return retry(
        retry=retry_if_exception_type(exceptions),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential_jitter(initial=0.5, max=5, jitter=0.5),
        before_sleep=_log_before_sleep,
        reraise=True,
    )
