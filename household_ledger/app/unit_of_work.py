"""
unit_of_work.py — Atomic write boundary for every ledger mutation.

Every state-changing service function runs its writes inside

    with unit_of_work(session) as uow:
        ...

which guarantees:
  - All writes (expense, obligations, attachments rows, audit entry,
    periodic record) are committed together or rolled back together.
    A concurrent reader never sees an expense without its obligations or a
    settlement without its audit entry.
  - External side effects done inside the block (attachment uploads) register
    a compensating action with uow.on_failure(). On any failure the
    compensations run, newest first, BEFORE the rollback. A failing
    compensation is logged and never masks the original error.
  - Storage-level conflicts (deadlock, serialization failure, lost
    connection) surface as TransientPersistenceError, the only retryable
    error kind. run_with_retry() re-runs a whole operation on that error and
    nothing else.

Layer rules:
  - No Flask imports. Retry settings are passed in by the route layer.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from household_ledger.app.errors import AppError, TransientPersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnitOfWork:
    """Handle yielded by unit_of_work(); collects compensating actions."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._compensations: list[tuple[str, Callable[[], object]]] = []

    def on_failure(self, description: str, action: Callable[[], object]) -> None:
        """Registers `action` to undo an external side effect if the unit fails."""
        self._compensations.append((description, action))

    def compensate(self) -> None:
        while self._compensations:
            description, action = self._compensations.pop()
            try:
                action()
            except Exception:
                logger.exception("Compensation failed: %s", description)
            else:
                logger.info("Compensated: %s", description)


def _is_transient(exc: Exception, integrity_is_transient: bool) -> bool:
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    # A unique-key race on an upsert: re-running finds the winner's row.
    return integrity_is_transient and isinstance(exc, IntegrityError)


@contextmanager
def unit_of_work(
        session: Session,
        integrity_is_transient: bool = False,
) -> Iterator[UnitOfWork]:
    """
    Runs the enclosed block as one atomic unit and commits it.

    Args:
        session:                The SQLAlchemy session all writes go through.
        integrity_is_transient: Treat IntegrityError as a retryable conflict.
                                Only for upserts keyed on a unique constraint.
    """
    uow = UnitOfWork(session)
    try:
        yield uow
        session.flush()
        session.commit()
    except Exception as exc:
        uow.compensate()
        session.rollback()
        if isinstance(exc, AppError):
            raise
        if _is_transient(exc, integrity_is_transient):
            logger.warning("Transient persistence failure: %s", exc)
            raise TransientPersistenceError(
                "The ledger is busy. Please retry the request."
            ) from exc
        raise


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, AppError) and exc.retryable


def run_with_retry(
        operation: Callable[[], T],
        attempts: int = 3,
        min_wait: float = 0.1,
        max_wait: float = 2.0,
) -> T:
    """
    Calls `operation` until it succeeds or a non-retryable error is raised.

    Only TransientPersistenceError is retried, at most `attempts` times in
    total, with exponential backoff between `min_wait` and `max_wait`
    seconds. The last transient error is re-raised unchanged.
    """
    retryer = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception(_is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    return retryer(operation)
