# Overview: Store-level concurrency helpers shared by every write path.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict, DependencyFailure, DomainError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Paths that must also serialize on SQLite claim the row with an UPDATE
    (see return_guard.claim_reference).
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, busy database) and StaleDataError
    (optimistic locking conflicts). func must be re-runnable from scratch:
    the session is rolled back before every retry. A DomainError rolls the
    session back and propagates unchanged.

    Once attempts are exhausted the store failure is translated:
    OperationalError -> DependencyFailure, StaleDataError -> Conflict.
    """
    for attempt in range(attempts):
        try:
            return func()
        except DomainError:
            db.session.rollback()
            raise
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise DependencyFailure("Database is unavailable or busy; try again") from exc
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise Conflict("Record was modified concurrently; reload and retry") from exc
        time.sleep(backoff_base * (2 ** attempt))
