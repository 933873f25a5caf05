# Overview: Row locking and retry-on-conflict for the atomic units of the transaction core.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Unavailable
from ..extensions import db


logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; PostgreSQL honors it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one atomic unit, retrying on lock/optimistic-version conflicts.

    func must do all of its writes and its single commit itself. Whatever it
    raises, the session is rolled back first, so a failed unit leaves nothing
    behind. OperationalError (deadlock, lock timeout, lost connection) and
    StaleDataError (version_id mismatch) are retried with exponential backoff;
    once attempts are exhausted they surface as Unavailable.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("Giving up after %d attempts: %s", attempts, exc)
                raise Unavailable(
                    "Storage is busy or unreachable; retry the request",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
