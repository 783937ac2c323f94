"""
Resilience patterns for remote API calls.

Provides exponential backoff retry for transient failures. Only the HTTP
transport retries; everything above it sees either a success or a terminal
error.
"""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, min_wait: float, max_wait: float) -> float:
    """Delay before retry number `attempt` (1-based): min_wait, 2x, 4x ... capped at max_wait."""
    return min(min_wait * (2 ** (attempt - 1)), max_wait)


def with_sync_retry(
    max_attempts: int = 3,
    min_wait: float = 0.1,
    max_wait: float = 30.0,
    max_elapsed: float | None = None,
    retry_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable:
    """
    Decorator for sync functions with exponential backoff retry.

    Args:
        max_attempts: Maximum number of attempts (first call included)
        min_wait: Wait before the first retry (seconds)
        max_wait: Maximum wait between retries (seconds)
        max_elapsed: Stop retrying once this much time has passed (seconds)
        retry_exceptions: Tuple of exception types to retry on
        sleep: Sleep function, swapped out in tests

    Usage:
        @with_sync_retry(max_attempts=5, retry_exceptions=(TransientAPIError,))
        def fetch(url: str) -> dict:
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            started = time.monotonic()

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except retry_exceptions as e:
                    if attempt == max_attempts:
                        logger.error(f"{func.__name__} failed after {max_attempts} attempts: {e}")
                        raise

                    wait_time = backoff_delay(attempt, min_wait, max_wait)
                    if max_elapsed is not None and time.monotonic() - started + wait_time > max_elapsed:
                        logger.error(f"{func.__name__} gave up after {attempt} attempts (retry budget spent): {e}")
                        raise

                    logger.warning(
                        f"{func.__name__} attempt {attempt} failed: {e}. Retrying in {wait_time:.1f}s...",
                        extra={"event": "retry", "attempt": attempt},
                    )
                    sleep(wait_time)

            raise RuntimeError(f"{func.__name__} failed without exception")

        return wrapper

    return decorator
