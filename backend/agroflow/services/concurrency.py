# Overview: Service-layer operations for concurrency; atomic updates, locking and retry.

from __future__ import annotations

import time

from sqlalchemy import text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from agroflow.extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite, begin_write() serialises writers instead.

    Rows already in the identity map are overwritten with the locked values,
    so checks never run against a copy loaded earlier in the request.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    Take the SQLite write lock at the start of a posting transaction.

    Without it two SQLite connections can both read, then one fails to
    upgrade its lock mid-transaction. Other engines rely on row locks and
    conditional updates and need nothing here.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def conditional_update(model, *, row_id: int, condition=None, values: dict) -> int:
    """
    Find-and-update-if-condition.

    Executes a single UPDATE ... WHERE id = :row_id AND <condition> and
    returns the number of affected rows (0 or 1). The read of the guarded
    column and the write happen in one statement, so two callers can never
    both pass the check on the same starting value.
    """
    stmt = update(model).where(model.id == row_id)
    if condition is not None:
        stmt = stmt.where(condition)
    stmt = stmt.values(**values).execution_options(synchronize_session="fetch")
    result = db.session.execute(stmt)
    return result.rowcount


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors propagate immediately
    after the session is rolled back, so a failed posting leaves nothing
    half-written.
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
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc

