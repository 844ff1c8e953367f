"""
services/periodic_service.py — Periodic Aggregator.

Households log a quantity per day (litres of milk delivered, for example).
At month end the month's records are folded into one ledger expense:

    total_quantity = sum(record.quantity for the month)
    total_amount   = round(total_quantity * rate_per_unit, 2)   (half-up)

The monthly expense is paid from household money: it carries no
obligations. It is written through expense_service.persist_expense(), so it
gets the same atomicity and audit trail as a hand-entered expense.

Days are UTC calendar days. A timestamp is reduced to the UTC date it falls
on; (household, day) is unique, so writing the same day twice overwrites.

Rate, category, item label and unit come from PeriodicSettings, built from
the app config (PERIODIC_* keys) by the route layer.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from household_ledger.app.errors import (
    BusinessRuleError,
    ErrorCode,
    NotFoundError,
    ValidationFailed,
)
from household_ledger.app.models.audit_entry import AuditAction
from household_ledger.app.models.expense import Expense
from household_ledger.app.models.periodic_record import PeriodicRecord
from household_ledger.app.services import allocation, audit_service, directory_service
from household_ledger.app.services.expense_service import persist_expense
from household_ledger.app.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

QUANTITY_STEP = Decimal("0.001")

# Largest value the Numeric(10, 3) quantity column holds.
MAX_QUANTITY = Decimal("9999999.999")


@dataclass(frozen=True)
class PeriodicSettings:
    rate_per_unit: Decimal = Decimal("52")
    category: str = "Milk"
    item_label: str = "milk"
    unit: str = "L"

    @classmethod
    def from_config(cls, config) -> "PeriodicSettings":
        return cls(
            rate_per_unit=Decimal(str(config.get("PERIODIC_RATE_PER_UNIT", "52"))),
            category=config.get("PERIODIC_CATEGORY", "Milk"),
            item_label=config.get("PERIODIC_ITEM_LABEL", "milk"),
            unit=config.get("PERIODIC_UNIT", "L"),
        )


@dataclass(frozen=True)
class MonthlyTotals:
    month: int
    year: int
    total_quantity: Decimal
    rate_per_unit: Decimal
    total_amount: Decimal
    records: list[PeriodicRecord] = field(default_factory=list)


# ── Pure helpers ───────────────────────────────────────────────────────────

def normalize_day(value) -> date:
    """
    Reduces a date, datetime or ISO-8601 string to a UTC calendar day.

    Naive datetimes are taken to be UTC already.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationFailed(
                ErrorCode.INVALID_FIELD,
                f"'{value}' is not an ISO-8601 date or timestamp.",
                field="day",
            )
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationFailed(ErrorCode.INVALID_FIELD, "day must be a date.", field="day")


def validate_quantity(quantity) -> Decimal:
    """Raises INVALID_QUANTITY (400) unless 0 <= quantity <= MAX_QUANTITY with <= 3 dp."""
    if isinstance(quantity, bool):
        raise ValidationFailed(ErrorCode.INVALID_QUANTITY, "Quantity must be a number.", field="quantity")
    try:
        value = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(ErrorCode.INVALID_QUANTITY, "Quantity must be a number.", field="quantity")

    if not value.is_finite() or value < 0 or value > MAX_QUANTITY:
        raise ValidationFailed(
            ErrorCode.INVALID_QUANTITY,
            f"Quantity must be a number between 0 and {MAX_QUANTITY}.",
            field="quantity",
        )
    if value != value.quantize(QUANTITY_STEP):
        raise ValidationFailed(
            ErrorCode.INVALID_QUANTITY,
            "Quantity must have at most 3 decimal places.",
            field="quantity",
        )
    return value.quantize(QUANTITY_STEP)


def validate_period(month: int, year: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationFailed(ErrorCode.INVALID_FIELD, "month must be between 1 and 12.", field="month")
    if not 1970 <= year <= 9999:
        raise ValidationFailed(ErrorCode.INVALID_FIELD, "year must be between 1970 and 9999.", field="year")


def month_bounds(month: int, year: int) -> tuple[date, date]:
    """First and last day of the month, both inclusive."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def monthly_amount(total_quantity: Decimal, rate_per_unit: Decimal) -> Decimal:
    return (total_quantity * rate_per_unit).quantize(allocation.CENT, rounding=ROUND_HALF_UP)


def _plain(value: Decimal) -> str:
    """40.000 -> '40', 12.500 -> '12.5'"""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def monthly_note(totals: MonthlyTotals, settings: PeriodicSettings) -> str:
    period = date(totals.year, totals.month, 1).strftime("%B %Y")
    return (
        f"Monthly {settings.item_label} for {period}: "
        f"{_plain(totals.total_quantity)} {settings.unit} "
        f"@ {_plain(totals.rate_per_unit)}/{settings.unit}"
    )


# ── Service functions ──────────────────────────────────────────────────────

def upsert_daily_record(
        household_id: int,
        caller_id: int,
        day,
        quantity,
        session: Session,
) -> PeriodicRecord:
    """
    Creates or overwrites the record for (household, UTC day).

    Two writers racing to insert the same new day collide on the unique key;
    that IntegrityError is reported as transient so a retry finds the row.
    """
    record_day = normalize_day(day)
    value = validate_quantity(quantity)

    with unit_of_work(session, integrity_is_transient=True):
        directory_service.is_member(household_id, caller_id, session)

        record = session.execute(
            select(PeriodicRecord)
            .where(
                PeriodicRecord.household_id == household_id,
                PeriodicRecord.day == record_day,
            )
            .with_for_update()
        ).scalar_one_or_none()

        before = audit_service.snapshot_record(record) if record is not None else None

        if record is None:
            record = PeriodicRecord(household_id=household_id, day=record_day, quantity=value)
            session.add(record)
        else:
            record.quantity = value
            record.updated_at = datetime.now(timezone.utc)
        session.flush()

        audit_service.record(
            session,
            household_id=household_id,
            actor_user_id=caller_id,
            action=AuditAction.PERIODIC_RECORD_UPSERTED,
            before=before,
            after=audit_service.snapshot_record(record),
        )

    return record


def aggregate_month(
        household_id: int,
        month: int,
        year: int,
        session: Session,
        settings: PeriodicSettings | None = None,
) -> MonthlyTotals:
    """
    Totals one month of daily records.

    Raises:
        INVALID_FIELD (400)      — month/year out of range
        NO_DATA_FOR_PERIOD (404) — no records in that month
    """
    validate_period(month, year)
    settings = settings or PeriodicSettings()
    first, last = month_bounds(month, year)

    records = list(
        session.execute(
            select(PeriodicRecord)
            .where(
                PeriodicRecord.household_id == household_id,
                PeriodicRecord.day >= first,
                PeriodicRecord.day <= last,
            )
            .order_by(PeriodicRecord.day.asc())
        ).scalars().all()
    )
    if not records:
        raise NotFoundError(
            ErrorCode.NO_DATA_FOR_PERIOD,
            f"No daily records for {year}-{month:02d}.",
        )

    total_quantity = sum((r.quantity for r in records), Decimal("0"))
    return MonthlyTotals(
        month=month,
        year=year,
        total_quantity=total_quantity,
        rate_per_unit=settings.rate_per_unit,
        total_amount=monthly_amount(total_quantity, settings.rate_per_unit),
        records=records,
    )


def list_month(
        household_id: int,
        caller_id: int,
        month: int,
        year: int,
        session: Session,
        settings: PeriodicSettings | None = None,
) -> MonthlyTotals:
    """Like aggregate_month(), for members, and an empty month yields zero totals."""
    directory_service.is_member(household_id, caller_id, session)
    settings = settings or PeriodicSettings()
    try:
        return aggregate_month(household_id, month, year, session, settings)
    except NotFoundError as exc:
        if exc.code != ErrorCode.NO_DATA_FOR_PERIOD:
            raise
        return MonthlyTotals(
            month=month,
            year=year,
            total_quantity=Decimal("0"),
            rate_per_unit=settings.rate_per_unit,
            total_amount=Decimal("0.00"),
        )


def materialize_monthly_expense(
        household_id: int,
        caller_id: int,
        month: int,
        year: int,
        session: Session,
        payer_id: int | None = None,
        settings: PeriodicSettings | None = None,
) -> Expense:
    """
    Turns one month of daily records into a single pooled-money expense.

    The payer is `payer_id` if given, else the household's primary holder.
    The expense is dated the last day of the month.

    Raises:
        NO_DATA_FOR_PERIOD (404)  — nothing recorded that month, or only zeros
        INVALID_AMOUNT (400)      — the monthly total does not fit a money column
        NO_PAYER_CONFIGURED (422) — no payer given and no primary holder
        PAYER_NOT_MEMBER (422)    — the payer is not in the household
    """
    settings = settings or PeriodicSettings()

    with unit_of_work(session):
        directory_service.is_member(household_id, caller_id, session)
        household = directory_service.get_household_or_404(household_id, session)

        totals = aggregate_month(household_id, month, year, session, settings)
        if totals.total_quantity == 0:
            raise NotFoundError(
                ErrorCode.NO_DATA_FOR_PERIOD,
                f"Every daily record for {year}-{month:02d} is zero.",
            )

        payer = payer_id if payer_id is not None else household.primary_holder_user_id
        if payer is None:
            raise BusinessRuleError(
                ErrorCode.NO_PAYER_CONFIGURED,
                "No payer given and the household has no primary holder.",
                field="payer_id",
            )

        members = directory_service.member_ids(household_id, session)
        if payer not in members:
            raise BusinessRuleError(
                ErrorCode.PAYER_NOT_MEMBER,
                f"User {payer} is not a member of household {household_id}.",
                field="payer_id",
            )

        shares = allocation.allocate(totals.total_amount, payer, members, allocation.PooledMoney())

        expense = persist_expense(
            session,
            household,
            actor_id=caller_id,
            payer_id=payer,
            amount=totals.total_amount,
            shares=shares,
            category=settings.category,
            note=monthly_note(totals, settings),
            expense_date=month_bounds(month, year)[1],
            action=AuditAction.PERIODIC_AGGREGATE_CREATED,
        )

    logger.info(
        "Monthly %s expense %s created for household %s (%s-%02d, %s %s)",
        settings.item_label, expense.id, household_id, year, month,
        totals.total_quantity, settings.unit,
    )
    return expense
