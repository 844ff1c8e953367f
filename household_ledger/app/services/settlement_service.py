"""
services/settlement_service.py — Settlement Tracker.

An obligation moves from unsettled to settled exactly once. A second attempt
is rejected with ALREADY_SETTLED (409); the original settled_at is untouched.

Two concurrent callers settling the same obligation:
  1. The obligation row is read with SELECT ... FOR UPDATE, so the second
     caller waits for the first transaction to finish.
  2. The flag flip itself is a conditional UPDATE ... WHERE settled = false.
     If it matches no row, another caller won the race (possible on stores
     that ignore row locks), and that is reported as ALREADY_SETTLED too.

The flip and its "settled" audit entry commit in the same unit of work.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from household_ledger.app.errors import ConflictError, ErrorCode, NotFoundError
from household_ledger.app.models.audit_entry import AuditAction
from household_ledger.app.models.expense import Expense
from household_ledger.app.models.obligation import Obligation
from household_ledger.app.services import audit_service, directory_service
from household_ledger.app.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


def _already_settled(expense_id: int, user_id: int) -> ConflictError:
    return ConflictError(
        ErrorCode.ALREADY_SETTLED,
        f"User {user_id}'s obligation on expense {expense_id} is already settled.",
    )


def mark_settled(
        expense_id: int,
        owed_by_user_id: int,
        caller_id: int,
        session: Session,
) -> Expense:
    """
    Marks the obligation of `owed_by_user_id` on an expense as settled.

    Any household member may record a settlement.

    Raises:
        EXPENSE_NOT_FOUND (404)    — expense does not exist
        NOT_A_MEMBER (403)         — caller is not in the household
        OBLIGATION_NOT_FOUND (404) — that user owes nothing on this expense
        ALREADY_SETTLED (409)      — already settled, or a concurrent caller won

    Returns:
        The expense with the updated obligation.
    """
    with unit_of_work(session):
        expense = session.get(Expense, expense_id)
        if expense is None:
            raise NotFoundError(
                ErrorCode.EXPENSE_NOT_FOUND,
                f"Expense {expense_id} does not exist.",
            )

        directory_service.is_member(expense.household_id, caller_id, session)

        obligation = session.execute(
            select(Obligation)
            .where(
                Obligation.expense_id == expense_id,
                Obligation.user_id == owed_by_user_id,
            )
            .with_for_update()
        ).scalar_one_or_none()

        if obligation is None:
            raise NotFoundError(
                ErrorCode.OBLIGATION_NOT_FOUND,
                f"User {owed_by_user_id} has no obligation on expense {expense_id}.",
                field="user_id",
            )

        if obligation.settled:
            raise _already_settled(expense_id, owed_by_user_id)

        before = audit_service.snapshot_expense(expense)

        result = session.execute(
            update(Obligation)
            .where(
                Obligation.id == obligation.id,
                Obligation.settled.is_(False),
            )
            .values(settled=True, settled_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise _already_settled(expense_id, owed_by_user_id)

        # Reload the flipped row before taking the "after" snapshot.
        session.refresh(obligation)

        audit_service.record(
            session,
            household_id=expense.household_id,
            actor_user_id=caller_id,
            action=AuditAction.SETTLED,
            expense_id=expense.id,
            before=before,
            after=audit_service.snapshot_expense(expense),
        )

    logger.info(
        "Obligation of user %s on expense %s settled by user %s",
        owed_by_user_id, expense_id, caller_id,
    )
    return expense
