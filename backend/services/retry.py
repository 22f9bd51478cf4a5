"""
Bounded retry for idempotent storage reads.

Only services decide what is safe to retry: reads go through
retry_read(); writes never do, because a timed-out write may still have
committed.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, DisconnectionError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session


logger = logging.getLogger('services.retry')

T = TypeVar("T")

STORAGE_ERRORS = (DBAPIError, DisconnectionError, PoolTimeoutError)

MAX_ATTEMPTS = 3
INITIAL_BACKOFF_SECONDS = 0.1
BACKOFF_MULTIPLIER = 2


def is_transient(error: Exception) -> bool:
    """Lost connections and pool exhaustion; a bad statement is never transient."""
    if isinstance(error, (DisconnectionError, PoolTimeoutError)):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


def retry_read(
    session: Session,
    fn: Callable[[], T],
    what: str,
    attempts: int = MAX_ATTEMPTS,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Run an idempotent read, retrying transient storage failures.

    The session is rolled back between attempts so a broken connection is
    not reused. The last error propagates once attempts run out.
    """
    sleep = sleep or time.sleep
    for attempt in range(attempts):
        try:
            return fn()
        except STORAGE_ERRORS as e:
            if not is_transient(e):
                raise
            session.rollback()
            if attempt >= attempts - 1:
                logger.error("read_failed what=%s attempts=%d err=%s", what, attempts, str(e)[:200])
                raise
            backoff = INITIAL_BACKOFF_SECONDS * (BACKOFF_MULTIPLIER ** attempt)
            logger.warning(
                "read_retry what=%s attempt=%d/%d sleep_s=%.2f err=%s",
                what, attempt + 1, attempts, backoff, str(e)[:100]
            )
            sleep(backoff)
    raise AssertionError("unreachable")
