"""Retry, rate limiting and circuit breaker tests"""

import asyncio
import json
import time

import httpx
import pytest

from app.core.circuit_breaker import CircuitBreaker
from app.core.errors import APIError
from app.core.http import fetch_with_rate_limit, fetch_with_retry
from app.core.rate_limiter import RateLimiter


def mock_client(statuses):
    """Client whose responses follow ``statuses``; the last one repeats."""
    calls = []

    def handler(request):
        calls.append(request)
        status = statuses[min(len(calls), len(statuses)) - 1]
        if status is None:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status, json={"ok": status < 400})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class TestFetchWithRetry:
    """Bounded exponential backoff"""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        client, calls = mock_client([200])
        sleep = RecordingSleep()

        resp = await fetch_with_retry(client, "https://example.test/x", retries=3, sleep=sleep)

        assert resp.json() == {"ok": True}
        assert len(calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_failures(self):
        client, calls = mock_client([500, 502, 200])
        sleep = RecordingSleep()

        resp = await fetch_with_retry(client, "https://example.test/x", retries=3, sleep=sleep)

        assert resp.status_code == 200
        assert len(calls) == 3
        assert sleep.delays == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_with_last_status(self):
        client, calls = mock_client([503])
        sleep = RecordingSleep()

        with pytest.raises(APIError) as exc_info:
            await fetch_with_retry(client, "https://example.test/x", retries=3, sleep=sleep)

        assert exc_info.value.status_code == 503
        assert len(calls) == 3
        assert sleep.delays == [1, 2]

    @pytest.mark.asyncio
    async def test_transport_error_has_no_status(self):
        client, calls = mock_client([None])

        with pytest.raises(APIError) as exc_info:
            await fetch_with_retry(client, "https://example.test/x", retries=2, sleep=RecordingSleep())

        assert exc_info.value.status_code is None
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_post_body_is_sent(self):
        client, calls = mock_client([200])

        await fetch_with_retry(client, "https://example.test/x", method="POST", json={"a": 1}, retries=1)

        assert calls[0].method == "POST"
        assert json.loads(calls[0].content) == {"a": 1}


class TestRateLimiter:
    """Sliding window admission"""

    def test_rejects_empty_window(self):
        with pytest.raises(ValueError):
            RateLimiter(0, 1000)

    @pytest.mark.asyncio
    async def test_calls_within_limit_do_not_wait(self):
        limiter = RateLimiter(3, 60_000)
        start = time.monotonic()

        for _ in range(3):
            await limiter.throttle()

        assert time.monotonic() - start < 0.1
        assert limiter.in_window == 3

    @pytest.mark.asyncio
    async def test_over_limit_waits_for_window(self):
        limiter = RateLimiter(2, 200)
        start = time.monotonic()

        for _ in range(3):
            await limiter.throttle()

        assert time.monotonic() - start >= 0.19

    @pytest.mark.asyncio
    async def test_waiters_leave_in_arrival_order(self):
        limiter = RateLimiter(1, 50)
        order = []

        async def call(n):
            await limiter.throttle()
            order.append(n)

        await asyncio.gather(*(call(n) for n in range(4)))

        assert order == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_rate_limited_fetch(self):
        limiter = RateLimiter(5, 60_000)
        client, calls = mock_client([200])

        await fetch_with_rate_limit(client, "https://example.test/x", limiter=limiter, retries=1)

        assert len(calls) == 1
        assert limiter.in_window == 1

        limiter.reset()
        assert limiter.in_window == 0


class TestCircuitBreaker:
    """Overload gate"""

    def test_trips_after_threshold(self):
        breaker = CircuitBreaker(threshold=3, cooldown_seconds=600)

        assert breaker.should_block(True, 100.0) is None
        assert breaker.should_block(True, 101.0) is None
        assert breaker.should_block(True, 102.0) == 702.0
        assert breaker.is_blocked(500.0) is True
        assert breaker.is_blocked(702.0) is False

    def test_non_overload_failures_are_ignored(self):
        breaker = CircuitBreaker(threshold=2, cooldown_seconds=600)

        breaker.should_block(True, 0.0)
        assert breaker.should_block(False, 1.0) is None
        assert breaker.is_blocked(1.0) is False

    def test_success_resets_streak(self):
        breaker = CircuitBreaker(threshold=2, cooldown_seconds=600)

        breaker.should_block(True, 0.0)
        breaker.record_success()
        assert breaker.should_block(True, 1.0) is None
        assert breaker.is_blocked(1.0) is False

    def test_clear(self):
        breaker = CircuitBreaker(threshold=1, cooldown_seconds=600)
        assert breaker.clear(0.0) is False

        breaker.should_block(True, 0.0)
        assert breaker.snapshot(1.0)["circuitBreakerActive"] is True
        assert breaker.clear(1.0) is True
        assert breaker.snapshot(1.0) == {"circuitBreakerActive": False, "circuitBreakerUntil": None}

    def test_clear_after_cooldown_reports_nothing(self):
        """An expired block has already reopened, so clearing it is a no-op"""
        breaker = CircuitBreaker(threshold=1, cooldown_seconds=600)
        breaker.should_block(True, 0.0)

        assert breaker.is_blocked(601.0) is False
        assert breaker.clear(601.0) is False

    def test_clear_resets_overload_streak(self):
        breaker = CircuitBreaker(threshold=3, cooldown_seconds=600)
        breaker.should_block(True, 0.0)

        assert breaker.clear(1.0) is True
        breaker.should_block(True, 2.0)
        assert breaker.should_block(True, 3.0) is None
