"""
models/household.py — Household table definition.

No business logic. No imports from services or routes.

Key design points:
  - `join_code` is unique and random (generated in household_service.py).
  - `primary_holder_user_id` is the designated primary payer. The rule that it
    must be a current member is enforced in household_service.py because it
    spans two tables.
  - `members` is ordered by join order; the allocation engine relies on that
    order to hand out remainder cents deterministically.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from household_ledger.app.extensions import db


class Household(db.Model):
    __tablename__ = "households"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_households_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="My Household",
    )

    join_code: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="INR",
    )

    # ON DELETE SET NULL: losing the user clears the designation, not the household.
    primary_holder_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    primary_holder: Mapped["User | None"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[primary_holder_user_id],
    )

    members: Mapped[list["HouseholdMember"]] = relationship(  # noqa: F821
        "HouseholdMember",
        back_populates="household",
        order_by="[HouseholdMember.joined_at, HouseholdMember.id]",
    )

    expenses: Mapped[list["Expense"]] = relationship(  # noqa: F821
        "Expense",
        back_populates="household",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Household id={self.id} name={self.name!r}>"
