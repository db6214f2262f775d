# Overview: Service-layer concurrency primitives: row locks, store-scoped transaction locks and retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import BackofficeError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def acquire_store_lock(store_id: int) -> None:
    """
    Take the exclusive, transaction-scoped lock that serializes every
    sequence-consuming and stock-checking operation of one store.

    - PostgreSQL: pg_advisory_xact_lock keyed by hashtext(store_id); released
      on commit/rollback. Other stores are not blocked.
    - SQLite: BEGIN IMMEDIATE takes the database write lock (the whole file,
      so all stores serialize). Skipped when a transaction is already open on
      the connection, in which case the caller already holds the write lock.
    - Anything else: no-op; the unique (store_id, number) constraints remain
      the only protection.
    """
    dialect = db.engine.dialect.name
    if dialect == "postgresql":
        db.session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": str(store_id)},
        )
    elif dialect == "sqlite":
        dbapi_conn = db.session.connection().connection.dbapi_connection
        if not dbapi_conn.in_transaction:
            db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors roll the session back so
    a held store lock is released, then propagate untouched.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.1)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except BackofficeError:
            db.session.rollback()
            raise
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

