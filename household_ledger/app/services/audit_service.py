"""
services/audit_service.py — Audit snapshots and the append-only audit writer.

Snapshots are plain dicts (JSON-safe: amounts as strings, dates as ISO
strings) tagged with "version": 1 so readers can tell old shapes from new
ones if the snapshot format ever changes. They are value copies: later
changes to the ORM object do not leak into an already-taken snapshot.

record() only adds the row to the session. The caller's unit of work commits
it together with the change it describes.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from household_ledger.app.models.audit_entry import AuditAction, AuditEntry
from household_ledger.app.models.expense import Expense
from household_ledger.app.models.periodic_record import PeriodicRecord
from household_ledger.app.services import directory_service

SNAPSHOT_VERSION = 1

MAX_ACTIVITY_LIMIT = 200


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def snapshot_expense(expense: Expense) -> dict:
    return {
        "version": SNAPSHOT_VERSION,
        "id": expense.id,
        "household_id": expense.household_id,
        "created_by_user_id": expense.created_by_user_id,
        "paid_by_user_id": expense.paid_by_user_id,
        "amount": str(expense.amount),
        "currency": expense.currency,
        "category": expense.category,
        "note": expense.note,
        "expense_date": _iso(expense.expense_date),
        "obligations": [
            {
                "user_id": o.user_id,
                "amount": str(o.amount),
                "settled": bool(o.settled),
                "settled_at": _iso(o.settled_at),
                "note": o.note,
            }
            for o in expense.obligations
        ],
        "attachments": [
            {"url": a.url, "public_id": a.public_id}
            for a in expense.attachments
        ],
    }


def snapshot_record(record: PeriodicRecord) -> dict:
    return {
        "version": SNAPSHOT_VERSION,
        "id": record.id,
        "household_id": record.household_id,
        "day": _iso(record.day),
        "quantity": str(record.quantity),
    }


def record(
        session: Session,
        household_id: int,
        actor_user_id: int,
        action: AuditAction,
        expense_id: int | None = None,
        before: dict | None = None,
        after: dict | None = None,
) -> AuditEntry:
    entry = AuditEntry(
        household_id=household_id,
        expense_id=expense_id,
        actor_user_id=actor_user_id,
        action=action,
        before=before,
        after=after,
    )
    session.add(entry)
    return entry


def list_activity(
        household_id: int,
        caller_id: int,
        session: Session,
        limit: int = 50,
) -> list[AuditEntry]:
    """Most recent audit entries of a household, newest first. Members only."""
    directory_service.is_member(household_id, caller_id, session)

    limit = max(1, min(limit, MAX_ACTIVITY_LIMIT))
    stmt = (
        select(AuditEntry)
        .where(AuditEntry.household_id == household_id)
        .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())
