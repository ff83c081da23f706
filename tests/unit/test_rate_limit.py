"""Unit tests for rate limiting."""

import pytest

from pm_indexer.utils.rate_limit import (
    RateLimiter,
    RateLimitResult,
    RedisRateLimiter,
    rate_limit_key,
    retry_after_seconds,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.mark.unit
class TestRateLimiter:
    """Test the in-memory fixed window limiter."""

    def test_allows_up_to_max_then_rejects(self):
        """Test the budget per window."""
        limiter = RateLimiter(max_requests=3, window_sec=60, clock=FakeClock())

        results = [limiter.check("k") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[3].reset_at == results[0].reset_at

    def test_window_resets(self):
        """Test a new window restores the budget."""
        clock = FakeClock()
        limiter = RateLimiter(max_requests=1, window_sec=60, clock=clock)

        assert limiter.check("k").allowed
        assert not limiter.check("k").allowed
        clock.now += 60
        assert limiter.check("k").allowed

    def test_keys_are_independent(self):
        """Test one caller cannot exhaust another's budget."""
        limiter = RateLimiter(max_requests=1, window_sec=60, clock=FakeClock())

        assert limiter.check("a").allowed
        assert not limiter.check("a").allowed
        assert limiter.check("b").allowed

    def test_bucket_count_is_bounded(self):
        """Test distinct keys never exceed the cap."""
        limiter = RateLimiter(max_requests=5, window_sec=60, max_buckets=3, clock=FakeClock())

        for i in range(10):
            limiter.check(f"key-{i}")

        assert len(limiter) == 3

    def test_least_recently_used_evicted(self):
        """Test a recently seen key survives eviction."""
        limiter = RateLimiter(max_requests=1, window_sec=60, max_buckets=2, clock=FakeClock())

        limiter.check("a")
        limiter.check("b")
        limiter.check("a")  # rejected, but refreshes recency
        limiter.check("c")  # evicts b

        assert not limiter.check("a").allowed
        assert limiter.check("b").allowed

    def test_expired_buckets_evicted_first(self):
        """Test expired buckets make room before live ones."""
        clock = FakeClock()
        limiter = RateLimiter(max_requests=1, window_sec=60, max_buckets=2, clock=clock)

        limiter.check("old")
        clock.now += 30
        limiter.check("live")
        clock.now += 31  # "old" expired, "live" has not
        limiter.check("new")

        assert not limiter.check("live").allowed

    def test_disabled_limit_allows_everything(self):
        """Test a non-positive max disables limiting."""
        limiter = RateLimiter(max_requests=0, window_sec=60, clock=FakeClock())

        assert all(limiter.check("k").allowed for _ in range(5))
        assert len(limiter) == 0


class FakeRedis:
    def __init__(self, fail=False):
        self.counts = {}
        self.ttls = {}
        self.fail = fail

    def incr(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key, seconds):
        self.ttls[key] = seconds

    def ttl(self, key):
        return self.ttls.get(key, -1)


class FakeCache:
    def __init__(self, client):
        self.client = client


@pytest.mark.unit
class TestRedisRateLimiter:
    """Test the Redis-backed limiter."""

    def test_counts_and_sets_expiry_once(self):
        """Test INCR with expiry on the first hit."""
        redis = FakeRedis()
        limiter = RedisRateLimiter(2, 60, prefix="rl", cache=FakeCache(redis), clock=FakeClock())

        results = [limiter.check("k") for _ in range(3)]

        assert [r.allowed for r in results] == [True, True, False]
        assert redis.ttls == {"rl:k": 60}
        assert results[0].reset_at == 1060.0

    def test_fails_open(self):
        """Test Redis outages allow the request."""
        limiter = RedisRateLimiter(1, 60, cache=FakeCache(FakeRedis(fail=True)), clock=FakeClock())

        assert limiter.check("k").allowed
        assert limiter.check("k").allowed


@pytest.mark.unit
class TestRateLimitHelpers:
    """Test caller identity and Retry-After."""

    def test_api_key_preferred(self):
        """Test the API key wins over everything else."""
        key = rate_limit_key({"x-api-key": "abc", "x-forwarded-for": "1.2.3.4"}, "9.9.9.9")
        assert key == "key:abc"

    def test_authorization_is_hashed(self):
        """Test credentials never appear in bucket keys."""
        key = rate_limit_key({"authorization": "Bearer secret"}, "9.9.9.9")
        assert key.startswith("auth:")
        assert "secret" not in key

    def test_forwarded_for_first_hop(self):
        """Test the original client of a proxied request."""
        assert rate_limit_key({"x-forwarded-for": "1.2.3.4, 10.0.0.1"}, "10.0.0.2") == "ip:1.2.3.4"

    def test_falls_back_to_peer(self):
        """Test the direct peer address."""
        assert rate_limit_key({}, "9.9.9.9") == "ip:9.9.9.9"
        assert rate_limit_key({}, None) == "ip:unknown"

    def test_retry_after_rounds_up(self):
        """Test Retry-After is whole seconds, never negative."""
        result = RateLimitResult(allowed=False, remaining=0, reset_at=1010.2)
        assert retry_after_seconds(result, now=1000.0) == 11
        assert retry_after_seconds(result, now=2000.0) == 0
