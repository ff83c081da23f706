"""Upstream failure classification."""

from typing import Optional

import httpx

from pm_indexer.utils.logging import log_api_error
from pm_indexer.utils.metrics import record_external_api_error

ERROR_CATEGORIES = ("timeout", "rate_limited", "http_4xx", "http_5xx", "network", "unknown")


class SourceFetchError(Exception):
    """A source could not be fetched after retries."""

    def __init__(self, source: str, category: str, message: str, status_code: Optional[int] = None):
        self.source = source
        self.category = category
        self.message = message
        self.status_code = status_code
        super().__init__(f"{source} fetch failed ({category}): {message}")


def classify_external_error(exc: BaseException) -> str:
    """Map an exception from an upstream call onto an error category."""
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        if code == 429:
            return "rate_limited"
        if code >= 500:
            return "http_5xx"
        if code >= 400:
            return "http_4xx"
    if isinstance(exc, httpx.TransportError):
        return "network"
    return "unknown"


def to_source_fetch_error(source: str, exc: BaseException) -> SourceFetchError:
    """Classify, log and count an upstream failure; return the error to raise."""
    if isinstance(exc, SourceFetchError):
        return exc

    category = classify_external_error(exc)
    status_code = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
    log_api_error(source, category, str(exc), status_code=status_code)
    record_external_api_error(source, category)
    return SourceFetchError(source, category, str(exc), status_code=status_code)
