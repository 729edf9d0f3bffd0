# Overview: Unit-of-work helpers: row locks, SQLite write serialization, retry with rollback.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import InfrastructureError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    begin_write() covers SQLite instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the unit of work as a write transaction.

    SQLite has no row locks, so take the database write lock up front
    (BEGIN IMMEDIATE). Concurrent writers then queue instead of
    interleaving their check-then-update steps.

    If the caller has already flushed writes on this session, SQLite holds
    the write lock for that transaction and the unit joins it instead of
    issuing a second BEGIN.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_connection = db.session.connection().connection.dbapi_connection
    if dbapi_connection.in_transaction:
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def expire_cached(model, ident) -> None:
    """
    Expire an already-loaded row after a bulk UPDATE touched it.

    Atomic increments run with synchronize_session=False, so an instance
    sitting in the identity map would otherwise keep its old values.
    """
    obj = db.session.identity_map.get(db.session.identity_key(model, ident))
    if obj is not None:
        db.session.expire(obj)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged, so a failed unit never leaves pending
    writes behind. Exhausted retries surface as InfrastructureError.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS") or 3

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                break
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

    current_app.logger.error("Ledger operation failed after %d attempts: %s", attempts, last_exc)
    raise InfrastructureError(
        "Storage unavailable, operation not applied",
        details={"attempts": attempts, "reason": type(last_exc).__name__},
    ) from last_exc
