"""Unit tests for retry helpers."""

import random

import httpx
import pytest

from pm_indexer.utils.retry import compute_backoff, is_retryable_http_error, store_retry


def status_error(code):
    request = httpx.Request("GET", "https://example.test")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


@pytest.mark.unit
class TestComputeBackoff:
    """Test exponential backoff delays."""

    def test_exponential_without_jitter(self):
        """Test doubling per attempt."""
        assert [compute_backoff(a, jitter_sec=0) for a in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        """Test the cap bounds long retry chains."""
        assert compute_backoff(20, base_sec=1, cap_sec=60, jitter_sec=0) == 60

    def test_jitter_bounded(self):
        """Test jitter adds at most jitter_sec."""
        rng = random.Random(7)
        for _ in range(50):
            delay = compute_backoff(2, jitter_sec=0.25, rng=rng)
            assert 4.0 <= delay <= 4.25


@pytest.mark.unit
class TestRetryableErrors:
    """Test which upstream failures are retried."""

    def test_server_errors_and_throttling(self):
        """Test 5xx and 429 retry."""
        assert is_retryable_http_error(status_error(500))
        assert is_retryable_http_error(status_error(503))
        assert is_retryable_http_error(status_error(429))

    def test_client_errors_do_not_retry(self):
        """Test 4xx other than 429 fail fast."""
        assert not is_retryable_http_error(status_error(404))
        assert not is_retryable_http_error(status_error(400))

    def test_transport_errors(self):
        """Test timeouts and connection failures retry."""
        assert is_retryable_http_error(httpx.ConnectTimeout("slow"))
        assert not is_retryable_http_error(ValueError("parse"))


@pytest.mark.unit
class TestStoreRetry:
    """Test the store retry decorator."""

    def test_non_matching_errors_not_retried(self):
        """Test only listed exception types retry."""
        calls = []

        @store_retry((ConnectionError,), max_attempts=3)
        def write():
            calls.append(1)
            raise ValueError("bad data")

        with pytest.raises(ValueError):
            write()
        assert len(calls) == 1
