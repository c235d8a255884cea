# Overview: Transaction scope and optimistic-concurrency primitives shared by the services.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import StoreError, VersionConflictError


@contextmanager
def unit_of_work():
    """
    One atomic store transaction.

    Commits when the block exits cleanly; any exception rolls back every
    write made in the block. Mapping of store failures:
    - StaleDataError (ORM version_id_col mismatch) -> VersionConflictError
    - IntegrityError -> re-raised untouched, callers interpret the constraint
    - any other SQLAlchemyError -> StoreError
    """
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise VersionConflictError("Record was updated by another user. Refresh and retry.") from exc
    except IntegrityError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreError("Store operation failed") from exc
    except BaseException:
        db.session.rollback()
        raise


def conditional_update(model, criteria, values: dict) -> int:
    """
    UPDATE model SET values WHERE criteria; returns matched row count.

    Used for compare-and-swap writes: include the expected version in
    criteria and treat 0 as a lost race. The identity map is not synchronized;
    callers must not trust already-loaded attributes afterwards.
    """
    stmt = (
        update(model)
        .where(*criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Caller-side retry for operations that lost an optimistic-concurrency race.

    Services never retry on their own. Callers that want a retry re-run the
    whole operation, which re-reads current state. Retries on
    VersionConflictError and StoreError (e.g. SQLite "database is locked").
    """
    for attempt in range(attempts):
        try:
            return func()
        except (VersionConflictError, StoreError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
