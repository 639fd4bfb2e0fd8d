#!/usr/bin/env python3
# CUI // SP-CTI
"""Retry with exponential backoff for store operations.

SQLite reports writer contention as ``OperationalError("database is locked")``.
Those are retried; every other OperationalError is surfaced immediately as a
StoreUnavailableError so handlers can map it to a structured failure.

Usage:
    from patterngate.resilience.retry import retry_store

    @retry_store()
    def insert(...):
        ...
"""

import functools
import logging
import random
import sqlite3
import time
from typing import Callable, Optional

from patterngate.resilience.errors import StoreUnavailableError

logger = logging.getLogger("patterngate.resilience.retry")

_LOCK_MARKERS = ("database is locked", "database table is locked", "busy")


def backoff_delay(attempt: int, base_delay: float = 0.05, max_delay: float = 1.0) -> float:
    """min(cap, base * 2^attempt), scaled by jitter in [0.5, 1.0)."""
    delay = min(max_delay, base_delay * (2 ** attempt))
    return delay * random.uniform(0.5, 1.0)


def is_lock_error(exc: BaseException) -> bool:
    """True when an OperationalError signals transient writer contention."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    text = str(exc).lower()
    return any(marker in text for marker in _LOCK_MARKERS)


def retry_store(
    max_retries: int = 4,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    on_retry: Optional[Callable] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """Decorator retrying a store call while the database is locked.

    Args:
        max_retries: Retries after the first call (total calls = max_retries + 1).
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay cap in seconds.
        on_retry: Optional callback(attempt, exc, delay) invoked before sleeping.
        sleep: Sleep function, replaceable in tests.

    Raises:
        StoreUnavailableError: when retries are exhausted or the error is not
            a lock error.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as exc:
                    if not is_lock_error(exc):
                        raise StoreUnavailableError(str(exc)) from exc
                    if attempt >= max_retries:
                        raise StoreUnavailableError(
                            f"{func.__name__}: still locked after {max_retries} retries"
                        ) from exc
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    logger.warning(
                        "Retry %d/%d for %s (%s), waiting %.2fs",
                        attempt + 1, max_retries, func.__name__, exc, delay,
                    )
                    if on_retry:
                        on_retry(attempt, exc, delay)
                    sleep(delay)
            raise StoreUnavailableError(func.__name__)

        return wrapper

    return decorator
