"""
models/audit_entry.py — Append-only audit trail.

No business logic. No imports from services or routes.

Key design points:
  - Rows are inserted by services/audit_service.py and never updated or
    deleted. There is no update path anywhere in the codebase.
  - `expense_id` is a plain integer, not a foreign key: a "deleted" entry must
    outlive the expense it describes.
  - `before` / `after` hold versioned value snapshots (see audit_service.py),
    stored as JSON.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from household_ledger.app.extensions import db


class AuditAction(str, enum.Enum):
    CREATED                    = "created"
    EDITED                     = "edited"
    SETTLED                    = "settled"
    DELETED                    = "deleted"
    PERIODIC_AGGREGATE_CREATED = "periodic-aggregate-created"
    PERIODIC_RECORD_UPSERTED   = "periodic-record-upserted"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class AuditEntry(db.Model):
    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_entries_household_created", "household_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    household_id: Mapped[int] = mapped_column(
        ForeignKey("households.id", ondelete="RESTRICT"),
        nullable=False,
    )

    expense_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        index=True,
    )

    actor_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    action: Mapped[AuditAction] = mapped_column(
        Enum(
            AuditAction,
            name="audit_action_enum",
            native_enum=False,
            length=32,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<AuditEntry id={self.id} "
            f"household_id={self.household_id} "
            f"expense_id={self.expense_id} "
            f"action={self.action.value}>"
        )
