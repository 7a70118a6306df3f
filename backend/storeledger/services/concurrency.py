# Overview: Transaction scope, row locking and retry helpers for multi-step writes.

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import LockTimeoutError
from storeledger.time_utils import utcnow


@dataclass
class UnitOfWork:
    """
    Transaction-scoped context threaded through every step of a multi-step
    write (stock change, ledger row, document header/lines).

    Everything done through `session` commits or rolls back together.
    """
    session: Session
    started_at: datetime = field(default_factory=utcnow)

    def add(self, instance):
        self.session.add(instance)
        return instance

    def flush(self) -> None:
        self.session.flush()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the whole unit of work
    holds the write lock from BEGIN IMMEDIATE instead.
    """
    return query.with_for_update()


def _sqlite_transaction_open(session: Session) -> bool:
    dbapi_conn = session.connection().connection.dbapi_connection
    return bool(getattr(dbapi_conn, "in_transaction", False))


@contextmanager
def unit_of_work() -> Iterator[UnitOfWork]:
    """
    Open one transaction boundary for a multi-step operation.

    Commits when the block exits normally; rolls back on every exception path
    and re-raises.
    """
    session = db.session
    if db.engine.dialect.name == "sqlite" and not _sqlite_transaction_open(session):
        session.execute(text("BEGIN IMMEDIATE"))
    uow = UnitOfWork(session=session)
    try:
        yield uow
        session.commit()
    except BaseException:
        session.rollback()
        raise


_LOCK_MARKERS = ("locked", "busy", "deadlock", "could not obtain lock", "lock timeout")


def _is_lock_error(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks) and StaleDataError (optimistic locking
    conflicts). When the budget is spent the caller gets LockTimeoutError,
    which is safe to retry later.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if isinstance(exc, OperationalError) and not _is_lock_error(exc):
                raise
            if attempt >= attempts - 1:
                raise LockTimeoutError(
                    "Store is busy, retry the request",
                    details={"attempts": attempts, "cause": exc.__class__.__name__},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
