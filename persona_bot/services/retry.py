from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from .errors import ProviderError

logger = logging.getLogger("persona_bot.llm")

T = TypeVar("T")

MAX_JITTER_MS = 1000


def should_retry(error: ProviderError) -> bool:
    return bool(error.retryable)


def backoff_delay_ms(
    error: ProviderError,
    attempt: int,
    base_ms: int,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before the next try; ``attempt`` is the 0-based index of the failed try."""
    if error.retry_after_ms is not None:
        return float(error.retry_after_ms)
    jitter = rng() * min(MAX_JITTER_MS, base_ms)
    return (2**attempt) * base_ms + jitter


async def call_with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_backoff_ms: int,
    label: str,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    total = max(1, int(attempts))
    last_error: ProviderError | None = None

    for attempt in range(total):
        try:
            return await operation()
        except ProviderError as exc:
            last_error = exc
        if not should_retry(last_error):
            raise last_error
        if attempt >= total - 1:
            break
        delay_ms = backoff_delay_ms(last_error, attempt, base_backoff_ms, rng)
        logger.warning(
            "Retrying %s (attempt %s/%s) after %.0fms: %s",
            label,
            attempt + 2,
            total,
            delay_ms,
            last_error,
        )
        await sleep(delay_ms / 1000.0)

    assert last_error is not None
    raise last_error
