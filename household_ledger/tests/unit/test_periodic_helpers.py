"""
tests/unit/test_periodic_helpers.py — Pure helpers of services/periodic_service.py.

Covers UTC day normalisation, quantity and period validation, month bounds,
half-up rounding of the monthly amount and the monthly note text.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from household_ledger.app.errors import AppError, ErrorCode
from household_ledger.app.services.periodic_service import (
    MonthlyTotals,
    PeriodicSettings,
    month_bounds,
    monthly_amount,
    monthly_note,
    normalize_day,
    validate_period,
    validate_quantity,
)


# ── normalize_day ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("value, expected", [
    (date(2026, 10, 3), date(2026, 10, 3)),
    ("2026-10-03", date(2026, 10, 3)),
    ("2026-10-03T23:59:59Z", date(2026, 10, 3)),
    ("2026-10-04T01:00:00+05:30", date(2026, 10, 3)),
    (datetime(2026, 10, 3, 22, 0, tzinfo=timezone(timedelta(hours=-5))), date(2026, 10, 4)),
    (datetime(2026, 10, 3, 22, 0), date(2026, 10, 3)),
])
def test_normalize_day(value, expected):
    assert normalize_day(value) == expected


@pytest.mark.parametrize("value", ["03/10/2026", 20261003, None])
def test_normalize_day_rejects(value):
    with pytest.raises(AppError) as exc_info:
        normalize_day(value)
    assert exc_info.value.code == ErrorCode.INVALID_FIELD
    assert exc_info.value.field == "day"


# ── validate_quantity ──────────────────────────────────────────────────────

def test_quantity_quantized_to_three_places():
    assert validate_quantity("1.5") == Decimal("1.500")
    assert validate_quantity(0) == Decimal("0.000")


@pytest.mark.parametrize("value", ["-0.001", "1.0001", "lots", "NaN", True])
def test_quantity_rejected(value):
    with pytest.raises(AppError) as exc_info:
        validate_quantity(value)
    assert exc_info.value.code == ErrorCode.INVALID_QUANTITY
    assert exc_info.value.http_status == 400


# ── validate_period / month_bounds ─────────────────────────────────────────

@pytest.mark.parametrize("month, year, field", [(0, 2026, "month"), (13, 2026, "month"), (1, 1969, "year")])
def test_validate_period(month, year, field):
    with pytest.raises(AppError) as exc_info:
        validate_period(month, year)
    assert exc_info.value.code == ErrorCode.INVALID_FIELD
    assert exc_info.value.field == field


def test_month_bounds_handles_leap_years():
    assert month_bounds(2, 2028) == (date(2028, 2, 1), date(2028, 2, 29))
    assert month_bounds(2, 2026) == (date(2026, 2, 1), date(2026, 2, 28))
    assert month_bounds(12, 2026) == (date(2026, 12, 1), date(2026, 12, 31))


# ── monthly_amount / monthly_note ──────────────────────────────────────────

def test_forty_units_at_52():
    assert monthly_amount(Decimal("40"), Decimal("52")) == Decimal("2080.00")


def test_monthly_amount_rounds_half_up():
    assert monthly_amount(Decimal("0.125"), Decimal("1")) == Decimal("0.13")
    assert monthly_amount(Decimal("1.005"), Decimal("1")) == Decimal("1.01")


def test_monthly_note_default_labels():
    totals = MonthlyTotals(
        month=10, year=2026,
        total_quantity=Decimal("40.000"),
        rate_per_unit=Decimal("52"),
        total_amount=Decimal("2080.00"),
    )
    assert monthly_note(totals, PeriodicSettings()) == "Monthly milk for October 2026: 40 L @ 52/L"


def test_monthly_note_custom_labels():
    settings = PeriodicSettings(rate_per_unit=Decimal("7.50"), item_label="water", unit="can")
    totals = MonthlyTotals(
        month=3, year=2027,
        total_quantity=Decimal("12.500"),
        rate_per_unit=settings.rate_per_unit,
        total_amount=monthly_amount(Decimal("12.500"), settings.rate_per_unit),
    )
    assert monthly_note(totals, settings) == "Monthly water for March 2027: 12.5 can @ 7.5/can"


def test_settings_from_config():
    settings = PeriodicSettings.from_config({
        "PERIODIC_RATE_PER_UNIT": Decimal("60"),
        "PERIODIC_CATEGORY": "Dairy",
        "PERIODIC_ITEM_LABEL": "milk",
        "PERIODIC_UNIT": "L",
    })
    assert settings.rate_per_unit == Decimal("60")
    assert settings.category == "Dairy"
