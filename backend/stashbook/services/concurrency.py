# Overview: Service-layer helpers for concurrency; row locks and bounded retry of DB work.

from __future__ import annotations

import time

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def claim_row(model, row_id) -> bool:
    """
    Take the write lock on one row before reading state that guards a write.

    Issues a no-op UPDATE against the row. Every backend locks the row for
    the rest of the transaction, and on SQLite the statement opens the
    transaction and holds the database write lock until commit, which
    SELECT ... FOR UPDATE does not do there.

    Returns False when the row does not exist.
    """
    result = db.session.execute(
        update(model)
        .where(model.id == row_id)
        .values(id=model.id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = (),
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and any extra exception types in retry_on.
    The session is rolled back before every retry, so func must redo all of
    its reads and writes from scratch. Any other failure also rolls back,
    releasing locks taken by func, and is re-raised.
    """
    retryable = RETRYABLE_ERRORS + tuple(retry_on)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc

