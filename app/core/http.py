"""Outbound HTTP helpers: bounded exponential-backoff retry and rate limiting."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import settings
from app.core.errors import APIError
from app.core.logging import get_logger
from app.core.rate_limiter import RateLimiter, coingecko_limiter

log = get_logger("http")

Sleep = Callable[[float], Awaitable[None]]


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    delay = state.next_action.sleep if state.next_action else 0
    log.warning(f"Attempt {state.attempt_number} failed ({exc}); retrying in {delay:.0f}s")


async def _send_once(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TransportError as exc:
        raise APIError(f"Transport error: {exc}", None, url) from exc

    if response.is_error:
        raise APIError(
            f"HTTP {response.status_code}: {response.reason_phrase}",
            response.status_code,
            url,
        )
    return response


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    method: str = "GET",
    retries: Optional[int] = None,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any,
) -> httpx.Response:
    """Perform a request, retrying failures with 1s, 2s, 4s... backoff.

    Raises ``APIError`` carrying the last HTTP status (``None`` for transport
    failures) once ``retries`` attempts are exhausted. The payload is not
    interpreted here.
    """
    attempts = max(1, retries if retries is not None else settings.HTTP_RETRIES)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, exp_base=2),
        retry=retry_if_exception_type(APIError),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await _send_once(client, method, url, **kwargs)

    raise APIError("Max retries exceeded", None, url)  # pragma: no cover


async def fetch_with_rate_limit(
    client: httpx.AsyncClient,
    url: str,
    *,
    limiter: RateLimiter = coingecko_limiter,
    **kwargs: Any,
) -> httpx.Response:
    """Throttle through ``limiter`` before a retried request."""
    await limiter.throttle()
    return await fetch_with_retry(client, url, **kwargs)


def build_client(timeout: Optional[float] = None, **kwargs: Any) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout or settings.HTTP_TIMEOUT_SECONDS, **kwargs)
