# Overview: Transaction, locking and retry helpers shared by every write path.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations and refresh any
    identity-map copy of the locked rows.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the whole write
    transaction is serialized by begin_write_transaction() instead.
    """
    return query.with_for_update().populate_existing()


def begin_write_transaction() -> None:
    """
    Start the database write transaction.

    SQLite only has database-level locks, so take the RESERVED lock up front
    (BEGIN IMMEDIATE); otherwise two writers can both read stock before either
    writes. Other dialects rely on row locks from lock_for_update().
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged. When retries are exhausted the failure is
    raised as ConcurrencyError.
    """
    if attempts is None:
        attempts = current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("TRANSACTION_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyError(
                    "Operation could not be completed due to concurrent updates; retry",
                    details={"attempts": attempts},
                ) from exc
            current_app.logger.warning(
                "Concurrency failure on attempt %s/%s, retrying: %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def run_in_transaction(func, **retry_kwargs):
    """
    Run func as one all-or-nothing unit: begin, func(), commit.

    On any failure nothing func wrote is visible afterwards.
    """
    def _op():
        begin_write_transaction()
        result = func()
        db.session.commit()
        return result

    return run_with_retry(_op, **retry_kwargs)
