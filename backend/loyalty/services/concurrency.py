# Overview: Service-layer operations for concurrency; unit-of-work and retry helpers.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


DEFAULT_ATTEMPTS = 5


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Versioned rows (users, events) still catch lost updates on SQLite.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


def atomic_unit(*steps, attempts: int = DEFAULT_ATTEMPTS, backoff_base: float = 0.05):
    """
    Run `steps` as a single all-or-nothing unit of work.

    Each step is a zero-argument callable. Steps run in order inside one
    database transaction; a step that raises aborts the unit. Reads and
    checks belong in the steps, not before the call, so that a retry after
    a concurrency conflict re-reads current state and re-validates.

    - Any exception: rollback, nothing from the unit survives, re-raise.
    - OperationalError / StaleDataError: rollback and retry the whole unit.

    Returns the value of the last step.
    """
    def _op():
        result = None
        try:
            for step in steps:
                result = step()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
