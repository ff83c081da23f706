"""Admin authentication and rate limiting middleware."""

import hmac
import time
from typing import Optional

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from pm_indexer.api.errors import error_response
from pm_indexer.config import settings
from pm_indexer.utils.rate_limit import get_admin_limiter, rate_limit_key, retry_after_seconds

logger = structlog.get_logger()

ADMIN_PREFIX = "/v1/admin"


def extract_admin_key(request: Request) -> Optional[str]:
    """Admin key from ``X-Admin-Key`` or a bearer token."""
    key = request.headers.get("X-Admin-Key")
    if key:
        return key

    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


class AdminAuthMiddleware(BaseHTTPMiddleware):
    """Rate limit, then authenticate, every request under /v1/admin."""

    def __init__(self, app, limiter=None, api_key: Optional[str] = None):
        super().__init__(app)
        self._limiter = limiter
        self._api_key = api_key

    @property
    def limiter(self):
        return self._limiter if self._limiter is not None else get_admin_limiter()

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key if self._api_key is not None else settings.admin_api_key

    async def dispatch(self, request: Request, call_next):
        """Process request and validate the admin key."""
        if not request.url.path.startswith(ADMIN_PREFIX):
            return await call_next(request)

        client = request.client.host if request.client else None

        result = self.limiter.check(rate_limit_key(request.headers, client))
        if not result.allowed:
            retry_after = retry_after_seconds(result, time.time())
            logger.warning("admin_rate_limited", path=request.url.path, client=client)
            return error_response(
                status.HTTP_429_TOO_MANY_REQUESTS,
                "RATE_LIMITED",
                "Too many admin requests",
                details={"retry_after_seconds": retry_after},
                headers={"Retry-After": str(retry_after)},
            )

        if not self.api_key:
            return error_response(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                "SERVICE_UNAVAILABLE",
                "Admin API is disabled. Set ADMIN_API_KEY to enable it.",
            )

        provided = extract_admin_key(request)
        if not provided or not hmac.compare_digest(provided, self.api_key):
            logger.warning(
                "admin_auth_failed",
                path=request.url.path,
                client=client,
                reason="missing_key" if not provided else "invalid_key",
            )
            return error_response(
                status.HTTP_401_UNAUTHORIZED,
                "UNAUTHORIZED",
                "Admin key required. Provide X-Admin-Key header or a bearer token.",
            )

        logger.info("admin_request", method=request.method, path=request.url.path, client=client)
        return await call_next(request)
