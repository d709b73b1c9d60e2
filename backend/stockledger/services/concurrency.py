# Overview: Single-writer boundary for the entity store; locking, retry and rollback around service transactions.

from __future__ import annotations

import threading
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

"""
Entity store concurrency model (authoritative)

- One writer at a time: every read-modify-write on products, movements,
  debts, clients or config runs inside run_locked().
- store_lock is re-entrant so a locked operation may call another
  locked helper (e.g. product creation booking its opening adjustment).
- Network I/O never happens while store_lock is held. Sync code copies a
  snapshot out under the lock, releases it, talks to the remote, then
  re-acquires the lock to apply results.
- Any exception inside a locked operation rolls the session back, so a
  caller never observes a partial batch.
"""

store_lock = threading.RLock()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (SQLite "database is locked") and
    StaleDataError (row changed underneath the session).
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


def run_locked(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func as one all-or-nothing transaction under store_lock.

    func is expected to commit on success. Anything it raises rolls the
    session back before propagating.
    """
    def _op():
        try:
            return func()
        except (OperationalError, StaleDataError):
            raise
        except Exception:
            db.session.rollback()
            raise

    with store_lock:
        return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)

