"""Fixed-window request rate limiting.

Two backends share one interface:

* ``RateLimiter`` keeps buckets in process memory, bounded by an LRU cap so
  an unbounded stream of distinct keys cannot grow memory without limit.
* ``RedisRateLimiter`` keeps counters in Redis so several API processes share
  one budget per key.
"""

import hashlib
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import structlog

from pm_indexer.config import settings
from pm_indexer.utils.cache import CacheClient, get_cache

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate limit check. ``reset_at`` is epoch seconds."""

    allowed: bool
    remaining: int
    reset_at: float


@dataclass
class _Bucket:
    count: int
    reset_at: float


class RateLimiter:
    """In-memory fixed-window limiter keyed by caller identity."""

    def __init__(
        self,
        max_requests: int,
        window_sec: float,
        max_buckets: int = 10000,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_sec = window_sec
        self.max_buckets = max(1, max_buckets)
        self._clock = clock
        self._buckets: "OrderedDict[str, _Bucket]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and report whether it is allowed."""
        now = self._clock()
        if self.max_requests <= 0:
            return RateLimitResult(allowed=True, remaining=self.max_requests, reset_at=now)

        with self._lock:
            bucket = self._buckets.get(key)

            if bucket is None or now >= bucket.reset_at:
                if bucket is None:
                    self._make_room(now)
                bucket = _Bucket(count=1, reset_at=now + self.window_sec)
                self._buckets[key] = bucket
                self._buckets.move_to_end(key)
                return RateLimitResult(
                    allowed=True,
                    remaining=self.max_requests - 1,
                    reset_at=bucket.reset_at,
                )

            # Rejections count as use for LRU ordering
            self._buckets.move_to_end(key)

            if bucket.count >= self.max_requests:
                return RateLimitResult(allowed=False, remaining=0, reset_at=bucket.reset_at)

            bucket.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=self.max_requests - bucket.count,
                reset_at=bucket.reset_at,
            )

    def _make_room(self, now: float) -> None:
        """Evict so one new bucket fits: expired buckets first, then LRU."""
        if len(self._buckets) < self.max_buckets:
            return

        expired = [k for k, b in self._buckets.items() if now >= b.reset_at]
        for k in expired:
            del self._buckets[k]

        while len(self._buckets) >= self.max_buckets:
            evicted, _ = self._buckets.popitem(last=False)
            logger.debug("rate_limit_bucket_evicted", key=evicted)


class RedisRateLimiter:
    """Fixed-window limiter with counters in Redis (INCR + EXPIRE).

    Fails open: if Redis is unreachable the request is allowed and the
    failure is logged.
    """

    def __init__(
        self,
        max_requests: int,
        window_sec: int,
        prefix: str = "ratelimit",
        cache: Optional[CacheClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_sec = int(window_sec)
        self.prefix = prefix
        self.cache = cache or get_cache()
        self._clock = clock

    def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and report whether it is allowed."""
        now = self._clock()
        if self.max_requests <= 0:
            return RateLimitResult(allowed=True, remaining=self.max_requests, reset_at=now)

        redis_key = f"{self.prefix}:{key}"
        try:
            client = self.cache.client
            count = client.incr(redis_key)
            if count == 1:
                client.expire(redis_key, self.window_sec)
            ttl = client.ttl(redis_key)
        except Exception as e:
            logger.error("rate_limit_redis_failed", key=redis_key, error=str(e))
            return RateLimitResult(allowed=True, remaining=self.max_requests, reset_at=now + self.window_sec)

        if ttl is None or ttl < 0:
            # Key lost its expiry (crash between INCR and EXPIRE)
            client.expire(redis_key, self.window_sec)
            ttl = self.window_sec

        reset_at = now + ttl
        if count > self.max_requests:
            return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)
        return RateLimitResult(allowed=True, remaining=self.max_requests - count, reset_at=reset_at)


def retry_after_seconds(result: RateLimitResult, now: Optional[float] = None) -> int:
    """Seconds until the caller's window resets, for the Retry-After header."""
    now = time.time() if now is None else now
    return max(0, math.ceil(result.reset_at - now))


def rate_limit_key(headers: Mapping[str, str], client_ip: Optional[str] = None) -> str:
    """Derive the caller identity used as the bucket key.

    Preference order: API key, hashed authorization header, forwarded client
    address, direct peer address.
    """
    api_key = headers.get("x-api-key")
    if api_key:
        return f"key:{api_key}"

    authorization = headers.get("authorization")
    if authorization:
        digest = hashlib.sha256(authorization.encode("utf-8")).hexdigest()
        return f"auth:{digest}"

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return f"ip:{first}"

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return f"ip:{real_ip.strip()}"

    return f"ip:{client_ip or 'unknown'}"


def build_rate_limiter(max_requests: int, window_sec: int, max_buckets: int, prefix: str):
    """Build a limiter for the configured backend."""
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter(max_requests, window_sec, prefix=prefix)
    return RateLimiter(max_requests, window_sec, max_buckets=max_buckets)


_search_limiter = None
_admin_limiter = None


def get_search_limiter():
    """Get the limiter protecting public search routes."""
    global _search_limiter
    if _search_limiter is None:
        _search_limiter = build_rate_limiter(
            settings.search_rate_limit_max,
            settings.search_rate_limit_window_sec,
            settings.search_rate_limit_max_buckets,
            prefix="ratelimit:search",
        )
    return _search_limiter


def get_admin_limiter():
    """Get the limiter protecting admin routes."""
    global _admin_limiter
    if _admin_limiter is None:
        _admin_limiter = build_rate_limiter(
            settings.admin_rate_limit_max,
            settings.admin_rate_limit_window_sec,
            settings.admin_rate_limit_max_buckets,
            prefix="ratelimit:admin",
        )
    return _admin_limiter
