"""Bounded-wait write transactions with retry on transient contention."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_PGCODES = {"40001", "40P01", "55P03"}


def is_postgres(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


def is_retryable(exc: Exception) -> bool:
    """Return True for lock waits, deadlocks and lost races."""
    if isinstance(exc, ConflictError):
        return True
    if not isinstance(exc, OperationalError):
        return False
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in RETRYABLE_PGCODES:
        return True
    return "database is locked" in str(exc.orig).lower()


def _backoff_delay(attempt: int) -> float:
    delay = min(settings.DB_TX_MAX_DELAY, settings.DB_TX_BASE_DELAY * (2**attempt))
    return delay + random.uniform(0, delay / 2)


def run_in_transaction(
    db: Session,
    fn: Callable[[Session], T],
    *,
    max_attempts: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `fn(db)` and commit, retrying transient failures.

    Each attempt starts from a rolled-back session. On PostgreSQL the
    transaction waits at most DB_LOCK_TIMEOUT_MS for row locks.

    Raises:
        The last error once attempts are exhausted, or any non-retryable error.
    """
    attempts = max_attempts or settings.DB_TX_MAX_ATTEMPTS
    for attempt in range(attempts):
        try:
            if is_postgres(db):
                db.execute(text(f"SET LOCAL lock_timeout = {int(settings.DB_LOCK_TIMEOUT_MS)}"))
            result = fn(db)
            db.commit()
            return result
        except Exception as exc:
            db.rollback()
            if not is_retryable(exc) or attempt >= attempts - 1:
                raise
            delay = _backoff_delay(attempt)
            logger.warning(
                "Transaction attempt %s/%s failed, retrying in %.2fs",
                attempt + 1,
                attempts,
                delay,
                exc_info=exc,
            )
            sleep(delay)
    raise RuntimeError("unreachable")
