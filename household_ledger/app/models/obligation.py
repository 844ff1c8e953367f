"""
models/obligation.py — Obligation table definition.

An obligation is the share of one expense that one household member owes.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float. Zero is allowed (a member can
    be listed with nothing owed).
  - expense_id is ON DELETE CASCADE — obligations are owned by their expense.
  - UNIQUE(expense_id, user_id): settlement looks an obligation up by
    (expense, owed-by user), so that pair must be unambiguous.
  - `settled` flips false → true exactly once. `settled_at` is written only on
    that transition (settlement_service.py).
  - `position` keeps the allocation order stable across reloads.

sum(obligations.amount) <= expense.amount is enforced in the allocation engine,
not here.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from household_ledger.app.extensions import db


class Obligation(db.Model):
    __tablename__ = "obligations"

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_obligations_expense_user"),
        CheckConstraint("amount >= 0", name="ck_obligations_amount_non_negative"),
        # A settled obligation always carries its settlement time.
        CheckConstraint(
            "settled = false OR settled_at IS NOT NULL",
            name="ck_obligations_settled_at_present",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Membership is checked when the expense is created, not re-validated later.
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    settled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    note: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="obligations",
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Obligation id={self.id} "
            f"expense_id={self.expense_id} "
            f"user_id={self.user_id} "
            f"amount={self.amount} "
            f"settled={self.settled}>"
        )
