"""Retry with exponential backoff for flaky upstream calls."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from bylawqa.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, jitter: bool = False, max_delay: float | None = None) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2^attempt, optionally jittered to 50-100%."""
    delay = base_delay * (2 ** attempt)
    if jitter:
        delay *= 0.5 + random.random() * 0.5
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float | None = 8.0,
    jitter: bool = False,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "call",
) -> T:
    """Await ``fn()`` up to ``max_attempts`` times, sleeping between failures.

    ConfigurationError is never retried. The last error is re-raised once
    attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(max_attempts):
        try:
            return await fn()
        except ConfigurationError:
            raise
        except retry_on as e:
            if attempt + 1 >= max_attempts:
                raise
            delay = backoff_delay(attempt, base_delay, jitter=jitter, max_delay=max_delay)
            logger.warning(
                "%s failed (attempt %d/%d): %s — retrying in %.2fs",
                label, attempt + 1, max_attempts, e, delay,
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
