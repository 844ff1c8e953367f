"""
models/expense.py — Expense (ledger entry) and Attachment table definitions.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2), never Float. Zero is allowed.
  - An expense owns its obligations and attachments: they are written and
    deleted together with it (cascade="all, delete-orphan").
  - `category` is free text (default "Other"); households use their own
    labels, and the periodic aggregator writes a fixed one.
  - `expense_date` is the effective date of the purchase, separate from
    `created_at` (when the row was recorded). Listing sorts on both.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from household_ledger.app.extensions import db


DEFAULT_CATEGORY = "Other"


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_expenses_amount_non_negative"),

        # Listing is always household-scoped and newest-first.
        Index("idx_expenses_household_date", "household_id", "expense_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    household_id: Mapped[int] = mapped_column(
        ForeignKey("households.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Who recorded the entry. Delete permission hinges on this.
    created_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Who actually paid at purchase time.
    paid_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="INR",
    )

    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=DEFAULT_CATEGORY,
    )

    note: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    expense_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Set on every successful edit.
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    household: Mapped["Household"] = relationship(  # noqa: F821
        "Household",
        back_populates="expenses",
    )

    payer: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[paid_by_user_id],
    )

    creator: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[created_by_user_id],
    )

    obligations: Mapped[list["Obligation"]] = relationship(  # noqa: F821
        "Obligation",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="Obligation.position",
    )

    attachments: Mapped[list["Attachment"]] = relationship(
        "Attachment",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="Attachment.id",
    )

    @property
    def obligation_total(self) -> Decimal:
        """Sum of all obligation amounts. Never exceeds `amount`."""
        return sum((o.amount for o in self.obligations), Decimal("0.00"))

    @property
    def has_unsettled(self) -> bool:
        return any(not o.settled for o in self.obligations)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"household_id={self.household_id} "
            f"amount={self.amount}>"
        )


class Attachment(db.Model):
    """A receipt or photo stored by the attachment collaborator."""

    __tablename__ = "expense_attachments"

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    url: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Storage-side identifier; the handle used for deletion.
    public_id: Mapped[str] = mapped_column(String(255), nullable=False)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    expense: Mapped["Expense"] = relationship(
        "Expense",
        back_populates="attachments",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Attachment id={self.id} public_id={self.public_id!r}>"
