# Overview: Transaction boundaries and row-locking helpers shared by the lifecycle services.

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModificationError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() refreshes any copy already in the identity map so the
    guard below the lock always sees the committed status.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    serializes writers there instead.
    """
    return query.with_for_update().populate_existing()


def begin_write_transaction() -> None:
    """
    On SQLite, take the database write lock before the first read.

    A deferred transaction that reads and then writes can fail immediately
    with "database is locked" when two writers race; BEGIN IMMEDIATE makes
    the second writer wait on the busy timeout instead.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_connection = db.session.connection().connection.dbapi_connection
    if not dbapi_connection.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def _is_lock_conflict(exc: OperationalError) -> bool:
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return any(marker in message for marker in ("locked", "deadlock", "could not serialize", "lock timeout"))


def run_transition(func):
    """
    Execute one lifecycle transition as a single atomic unit.

    Read, validate, write state and append activity all happen inside func();
    the session is committed once on success and rolled back on any error, so
    a failed transition leaves no partial state and no orphaned activity.

    Lost races surface as ConcurrentModificationError. Failed transitions are
    never retried here; the caller decides.
    """
    try:
        begin_write_transaction()
        result = func()
        db.session.commit()
        return result
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrentModificationError(
            "Document was modified by a concurrent request", details={"reason": str(exc)}
        ) from exc
    except OperationalError as exc:
        db.session.rollback()
        if _is_lock_conflict(exc):
            raise ConcurrentModificationError("Document is locked by a concurrent request") from exc
        raise
    except Exception:
        db.session.rollback()
        raise

