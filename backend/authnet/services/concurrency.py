# Overview: Transaction, locking and compare-and-swap helpers shared by the services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a unit of work, rolling back the session on any failure.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Business errors are never retried.
    When the retry budget is exhausted the storage fault surfaces as a
    StorageError so callers can tell it apart from a rejection.
    """
    if attempts is None:
        attempts = current_app.config.get("STORAGE_RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise StorageError(f"Storage conflict persisted after {attempts} attempts") from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def compare_and_set(model, pk: int, *, field: str, expected, values: dict) -> bool:
    """
    Conditional UPDATE: write `values` only while `field` still equals `expected`.

    Returns False when another writer changed the field first (zero rows
    matched). Bumps version_id so ORM copies held elsewhere go stale.
    Callers must not mutate the same row through the ORM before committing.
    """
    column = getattr(model, field)
    condition = column.is_(None) if expected is None else column == expected

    patch = dict(values)
    if hasattr(model, "version_id"):
        patch["version_id"] = model.version_id + 1

    updated = (
        db.session.query(model)
        .filter(model.id == pk, condition)
        .update(patch, synchronize_session=False)
    )
    return updated == 1
