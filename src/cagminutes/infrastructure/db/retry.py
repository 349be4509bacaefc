from __future__ import annotations

import logging
import threading
import time
from typing import Callable, TypeVar

from cagminutes.infrastructure.db.sqlite import is_lock_contention

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_under_lock(
    lock: threading.Lock,
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.1,
    is_retryable: Callable[[BaseException], bool] = is_lock_contention,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` while holding ``lock``, retrying retryable failures.

    The lock is held for a single attempt only. Between attempts the caller
    sleeps ``backoff_seconds * attempt`` (attempt counted from 1) without the
    lock, so other pending operations can make progress. The last retryable
    failure, or any non-retryable one, propagates unchanged.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            with lock:
                return operation()
        except Exception as exc:
            if attempt == attempts or not is_retryable(exc):
                raise
            delay = backoff_seconds * attempt
            logger.warning(
                "Datastore busy (attempt %s/%s), retrying in %.2fs: %s",
                attempt,
                attempts,
                delay,
                exc,
            )
            sleep(delay)

    raise AssertionError("unreachable")
