"""Redis access for query-embedding caching and metric counters.

Every operation except ``ping`` logs and swallows Redis failures so a cache
outage degrades to cache misses instead of failing searches or syncs.
"""

from typing import Any, Optional
import json
import redis
import structlog

from pm_indexer.config import settings

logger = structlog.get_logger()


def _redacted(url: str) -> str:
    return url.split("@")[1] if "@" in url else "***"


class CacheClient:
    """JSON values and TTL'd counters in Redis."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self._client = None

    @property
    def client(self) -> redis.Redis:
        """Redis connection, created on first use."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            logger.info("redis_client_initialized", url=_redacted(self.redis_url))
        return self._client

    def ping(self) -> bool:
        """Round-trip to Redis; raises when it is unreachable."""
        return self.client.ping()

    def get(self, key: str) -> Optional[Any]:
        """Decoded JSON value for ``key``, or None on miss or Redis failure."""
        try:
            value = self.client.get(key)
        except redis.RedisError as e:
            logger.error("cache_get_failed", key=key, error=str(e))
            return None
        if value is None:
            logger.debug("cache_miss", key=key)
            return None
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store ``value`` as JSON for ``ttl`` seconds."""
        try:
            self.client.setex(key, ttl, json.dumps(value))
        except redis.RedisError as e:
            logger.error("cache_set_failed", key=key, error=str(e))
            return False
        return True

    def incr_with_ttl(self, key: str, amount: int, ttl: int) -> Optional[int]:
        """Add ``amount`` to a counter and refresh its expiry in one round trip.

        Returns:
            New counter value, or None when Redis is unavailable
        """
        try:
            pipe = self.client.pipeline()
            pipe.incrby(key, amount)
            pipe.expire(key, ttl)
            value, _ = pipe.execute()
        except redis.RedisError as e:
            logger.error("cache_incr_failed", key=key, error=str(e))
            return None
        return value


_cache = None


def get_cache() -> CacheClient:
    """Process-wide cache client."""
    global _cache
    if _cache is None:
        _cache = CacheClient()
    return _cache
