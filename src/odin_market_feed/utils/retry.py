"""Backoff helpers for (re)connecting to the feed server."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

JITTER_FRACTION = 0.25


def backoff_delay(
    retry_number: int,
    initial_delay: float,
    max_delay: float,
    backoff_factor: float,
    jitter: bool = True
) -> float:
    """Seconds to wait before retry ``retry_number`` (0 for the first retry)."""
    delay = initial_delay * backoff_factor ** retry_number
    if jitter:
        delay *= random.uniform(1 - JITTER_FRACTION, 1 + JITTER_FRACTION)
    return min(delay, max_delay)


async def exponential_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    operation: str = "operation"
) -> T:
    """
    Await ``func`` until it succeeds or ``max_attempts`` calls have failed.

    Only ``exceptions`` are retried; anything else propagates immediately.
    ``operation`` names the call in log lines. The error from the final
    attempt is re-raised.
    """
    attempts = max(1, max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except exceptions as e:
            if attempt == attempts:
                logger.error(f"{operation} failed after {attempts} attempt(s): {e}")
                raise

            delay = backoff_delay(attempt - 1, initial_delay, max_delay, backoff_factor, jitter)
            logger.warning(
                f"{operation} failed (attempt {attempt}/{attempts}): {e}; "
                f"next try in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
