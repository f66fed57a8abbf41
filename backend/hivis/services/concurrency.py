# Overview: Locking and retry helpers shared by every service that mutates loyalty state.

from __future__ import annotations

import random
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


DEFAULT_ATTEMPTS = 5


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the users.version_id
    column turns a lost update into a StaleDataError that run_with_retry replays.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = DEFAULT_ATTEMPTS, backoff_base: float = 0.05):
    """
    Execute a unit of work with retry on concurrency-related failures.

    func must do all of its reads, writes and the commit itself so a replay
    starts from fresh rows. Retries on OperationalError (deadlocks, busy
    database) and StaleDataError (optimistic version conflict).
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.info(
                "Retrying after concurrency conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt) + random.uniform(0, backoff_base))
