"""
models/periodic_record.py — Per-day quantity records (e.g. litres of milk).

Key design points:
  - `day` is a DATE: the UTC calendar day the quantity belongs to. Callers may
    send any timestamp; periodic_service.py normalises it first.
  - UNIQUE(household_id, day): writes are upserts, never duplicates.
  - `quantity` is Numeric(10, 3) so fractional units (0.5 L) are exact.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from household_ledger.app.extensions import db


class PeriodicRecord(db.Model):
    __tablename__ = "periodic_records"

    __table_args__ = (
        UniqueConstraint("household_id", "day", name="uq_periodic_records_household_day"),
        CheckConstraint("quantity >= 0", name="ck_periodic_records_quantity_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    household_id: Mapped[int] = mapped_column(
        ForeignKey("households.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    day: Mapped[date] = mapped_column(Date, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(10, 3),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PeriodicRecord id={self.id} "
            f"household_id={self.household_id} "
            f"day={self.day.isoformat()} "
            f"quantity={self.quantity}>"
        )
