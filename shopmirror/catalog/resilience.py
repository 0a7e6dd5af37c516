"""Retry policy shared by every outbound request."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional, TypeVar

from aiohttp import ClientConnectionError, ClientPayloadError, ClientResponseError, ServerTimeoutError

from shopmirror.errors import FetchExhausted

RETRYABLE_HTTP_STATUSES = {408, 429, 500, 502, 503, 504}
DEFAULT_RETRY_DELAY_SECONDS = 10.0
DEFAULT_RESOURCE_ATTEMPTS = 6

_T = TypeVar("_T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry policy; ``max_attempts=None`` retries until success."""

    delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    max_attempts: Optional[int] = None

    @classmethod
    def unbounded(cls, delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS) -> "RetryPolicy":
        return cls(delay_seconds=delay_seconds, max_attempts=None)

    @classmethod
    def bounded(
        cls,
        max_attempts: int = DEFAULT_RESOURCE_ATTEMPTS,
        delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> "RetryPolicy":
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        return cls(delay_seconds=delay_seconds, max_attempts=max_attempts)

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts


def is_retryable_exception(exc: Exception) -> bool:
    return (
        isinstance(exc, (asyncio.TimeoutError, ClientConnectionError, ServerTimeoutError, ClientPayloadError))
        or (isinstance(exc, ClientResponseError) and exc.status in RETRYABLE_HTTP_STATUSES)
    )


async def run_with_retries(
    operation: Callable[[], Awaitable[_T]],
    *,
    url: str,
    policy: RetryPolicy,
    on_retry: Callable[[int, Optional[int], float, Exception], None] | None = None,
    on_exhausted: Callable[[int], None] | None = None,
) -> _T:
    """Run ``operation`` until it succeeds, fails permanently, or the policy runs out."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable_exception(exc):
                raise
            if policy.exhausted(attempt):
                if on_exhausted is not None:
                    on_exhausted(attempt)
                raise FetchExhausted(url, attempt) from exc
            if on_retry is not None:
                on_retry(attempt, policy.max_attempts, policy.delay_seconds, exc)
            await asyncio.sleep(policy.delay_seconds)
