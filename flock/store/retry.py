"""Retry helper for calls against the external record store."""

import time
from typing import Callable, Optional, TypeVar

from flock.common.logger import get_logger
from flock.core.errors import UnavailableError

logger = get_logger("store.retry")

T = TypeVar("T")


def call_with_retry(
    func: Callable[[], T],
    *,
    max_retries: int = 3,
    retry_delay: float = 0.5,
    description: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call func, retrying UnavailableError with exponential backoff.

    Only UnavailableError is retried; NotFound, Forbidden and Conflict
    propagate on the first attempt.

    Args:
        func: Zero-argument callable to run
        max_retries: Maximum attempts, including the first
        retry_delay: Initial delay between attempts (doubles each retry)
        description: Label used in log messages
        sleep: Sleep function, replaceable in tests

    Returns:
        Whatever func returns

    Raises:
        UnavailableError: If every attempt failed
    """
    label = description or getattr(func, "__name__", "store call")
    attempts = max(1, max_retries)
    delay = retry_delay
    attempt = 1

    while True:
        try:
            return func()
        except UnavailableError as e:
            logger.warning(f"{label} unavailable (attempt {attempt}/{attempts}): {e}")
            if attempt >= attempts:
                raise

        # Exponential backoff
        sleep(delay)
        delay *= 2
        attempt += 1
