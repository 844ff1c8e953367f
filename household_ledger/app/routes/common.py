"""
routes/common.py — Helpers shared by the route modules.

  - run_mutation():    runs a mutating service call under the configured retry
                       policy (only TransientPersistenceError is retried)
  - attachment_store() / periodic_settings(): per-app service handles
  - serialize_*():     pure data-shaping for JSON output. Amounts are strings.

No business logic here.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from flask import current_app

from household_ledger.app.models.audit_entry import AuditEntry
from household_ledger.app.models.expense import Expense
from household_ledger.app.models.household import Household
from household_ledger.app.models.household_member import HouseholdMember
from household_ledger.app.models.periodic_record import PeriodicRecord
from household_ledger.app.services.periodic_service import MonthlyTotals, PeriodicSettings
from household_ledger.app.storage.attachments import AttachmentStore
from household_ledger.app.unit_of_work import run_with_retry

T = TypeVar("T")


def run_mutation(operation: Callable[[], T]) -> T:
    config = current_app.config
    return run_with_retry(
        operation,
        attempts=config.get("PERSISTENCE_RETRY_ATTEMPTS", 3),
        min_wait=config.get("PERSISTENCE_RETRY_MIN_WAIT", 0.1),
        max_wait=config.get("PERSISTENCE_RETRY_MAX_WAIT", 2.0),
    )


def attachment_store() -> AttachmentStore:
    return current_app.extensions["attachment_store"]


def periodic_settings() -> PeriodicSettings:
    return PeriodicSettings.from_config(current_app.config)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


# ── Serialization helpers ──────────────────────────────────────────────────

def serialize_expense(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "household_id": expense.household_id,
        "created_by_user_id": expense.created_by_user_id,
        "paid_by_user_id": expense.paid_by_user_id,
        "paid_by_name": expense.payer.name if expense.payer else None,
        "amount": str(expense.amount),
        "currency": expense.currency,
        "category": expense.category,
        "note": expense.note,
        "expense_date": _iso(expense.expense_date),
        "created_at": _iso(expense.created_at),
        "updated_at": _iso(expense.updated_at),
        "obligations": [
            {
                "id": o.id,
                "user_id": o.user_id,
                "amount": str(o.amount),
                "settled": o.settled,
                "settled_at": _iso(o.settled_at),
                "note": o.note,
            }
            for o in expense.obligations
        ],
        "attachments": [
            {
                "id": a.id,
                "url": a.url,
                "public_id": a.public_id,
                "uploaded_at": _iso(a.uploaded_at),
            }
            for a in expense.attachments
        ],
    }


def serialize_member(member: HouseholdMember) -> dict:
    return {
        "user_id": member.user_id,
        "name": member.user.name if member.user else None,
        "role": member.role.value,
        "joined_at": _iso(member.joined_at),
    }


def serialize_household(household: Household) -> dict:
    return {
        "id": household.id,
        "name": household.name,
        "join_code": household.join_code,
        "currency": household.currency,
        "primary_holder_user_id": household.primary_holder_user_id,
        "created_at": _iso(household.created_at),
        "members": [serialize_member(m) for m in household.members],
    }


def serialize_record(record: PeriodicRecord) -> dict:
    return {
        "id": record.id,
        "household_id": record.household_id,
        "day": _iso(record.day),
        "quantity": str(record.quantity),
        "created_at": _iso(record.created_at),
        "updated_at": _iso(record.updated_at),
    }


def serialize_month(totals: MonthlyTotals) -> dict:
    return {
        "month": totals.month,
        "year": totals.year,
        "records": [serialize_record(r) for r in totals.records],
        "totals": {
            "total_quantity": str(totals.total_quantity),
            "rate_per_unit": str(totals.rate_per_unit),
            "total_amount": str(totals.total_amount),
        },
    }


def serialize_audit_entry(entry: AuditEntry) -> dict:
    return {
        "id": entry.id,
        "household_id": entry.household_id,
        "expense_id": entry.expense_id,
        "actor_user_id": entry.actor_user_id,
        "action": entry.action.value,
        "before": entry.before,
        "after": entry.after,
        "created_at": _iso(entry.created_at),
    }
