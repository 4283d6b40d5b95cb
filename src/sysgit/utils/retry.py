"""Retry helpers for transient store contention.

git refuses to write a ref while another process holds its lock file
("cannot lock ref"). Such failures are transient and retried with
exponential backoff; every other git failure propagates immediately.
"""
import logging
from typing import Callable

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger(__name__)

# Concurrent sysgit runs hold ref locks for milliseconds
LOCK_ATTEMPTS = 5
LOCK_MIN_WAIT = 0.05
LOCK_MAX_WAIT = 1.0


def with_retry(
    exceptions: tuple,
    max_attempts: int = LOCK_ATTEMPTS,
    min_wait: float = LOCK_MIN_WAIT,
    max_wait: float = LOCK_MAX_WAIT,
) -> Callable:
    """Decorator retrying on ``exceptions`` with exponential backoff.

    The last exception is re-raised once ``max_attempts`` is exhausted.

    Args:
        exceptions: Tuple of exception types to retry on
        max_attempts: Maximum number of attempts
        min_wait: First and minimum wait between attempts (seconds)
        max_wait: Maximum wait between attempts (seconds)
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
