"""Shared route dependencies (overridable in tests)."""

import time
from typing import Optional

from fastapi import Depends, Header, Request, status

from pm_indexer.api.errors import ApiError
from pm_indexer.search.service import SearchService
from pm_indexer.sync.orchestrator import SyncOrchestrator, get_orchestrator
from pm_indexer.utils.rate_limit import get_search_limiter, rate_limit_key, retry_after_seconds

_search_service = None


def get_search_service() -> SearchService:
    global _search_service
    if _search_service is None:
        _search_service = SearchService()
    return _search_service


def get_sync_orchestrator() -> SyncOrchestrator:
    return get_orchestrator()


def get_search_rate_limiter():
    return get_search_limiter()


def enforce_rate_limit(limiter, request: Request) -> None:
    """Count the request against ``limiter``; raise 429 when over budget."""
    key = rate_limit_key(request.headers, request.client.host if request.client else None)
    result = limiter.check(key)
    if not result.allowed:
        retry_after = retry_after_seconds(result, time.time())
        raise ApiError(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "RATE_LIMITED",
            "Too many requests",
            details={"retry_after_seconds": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


def search_rate_limit(request: Request, limiter=Depends(get_search_rate_limiter)) -> None:
    enforce_rate_limit(limiter, request)


def get_job_runner():
    from pm_indexer.workers.job_worker import run_job_worker_once

    return run_job_worker_once


def get_owner_key(
    x_user_id: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None),
) -> str:
    """Caller identity owning watchlists and alerts."""
    owner_key = (x_user_id or x_api_key or "").strip()
    if not owner_key:
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED,
            "UNAUTHORIZED",
            "Missing user identifier. Provide an X-User-Id or X-Api-Key header.",
        )
    return owner_key[:255]
