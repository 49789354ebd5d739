"""Bounded exponential-backoff retry for idempotent upstream reads."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429, 500, 502, 503, 504})
BACKOFF_BASE_S: float = 0.5
BACKOFF_MAX_S: float = 4.0


def is_retryable(exc: BaseException) -> bool:
    """True for transport errors, timeouts and transient HTTP statuses."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError))


def backoff_seconds(attempt: int, base: float = BACKOFF_BASE_S) -> float:
    """Delay before retry number ``attempt`` (1-based), doubling each time."""
    attempt = max(1, attempt)
    return min(BACKOFF_MAX_S, base * (2 ** (attempt - 1)))


async def with_retries(
    call: Callable[[], Awaitable[T]],
    *,
    retries: int = 2,
    base_delay: float = BACKOFF_BASE_S,
    description: str = "upstream call",
    retry_on: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Awaits ``call()`` and retries transient failures up to ``retries`` times.

    ``retry_on`` decides which errors are transient. Other errors and the
    last transient error propagate unchanged.
    """
    attempt = 0
    while True:
        try:
            return await call()
        except Exception as exc:
            if attempt >= retries or not retry_on(exc):
                raise
            attempt += 1
            delay = backoff_seconds(attempt, base_delay)
            logger.warning(
                "%s failed (%s); retry %d/%d in %.2fs",
                description,
                exc,
                attempt,
                retries,
                delay,
            )
            await asyncio.sleep(delay)
