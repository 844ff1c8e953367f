"""
schemas/periodic_schema.py — Marshmallow schemas for the daily-record and
monthly-expense endpoints.

Quantity precision (3 dp) and the upsert itself are handled in
services/periodic_service.py.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate

from household_ledger.app.errors import ErrorCode
from household_ledger.app.schemas.common import LedgerDate
from household_ledger.app.services.periodic_service import MAX_QUANTITY

_MONTH = validate.Range(min=1, max=12, error="month must be between 1 and 12.")
_YEAR = validate.Range(min=1970, max=9999, error="year must be between 1970 and 9999.")


def _validate_quantity(value: Decimal) -> None:
    if (
        not value.is_finite()
        or value < Decimal("0")
        or value > MAX_QUANTITY
        or value.as_tuple().exponent < -3
    ):
        raise ValidationError(ErrorCode.INVALID_QUANTITY)


class DailyRecordSchema(Schema):
    """
    PUT /households/:id/daily-records

    `day` may be a date or a timestamp; either way it is reduced to the
    UTC calendar day.
    """

    day = LedgerDate(required=True)
    quantity = fields.Decimal(required=True, validate=_validate_quantity)


class MonthQuerySchema(Schema):
    """GET /households/:id/daily-records?month=&year="""

    class Meta:
        unknown = EXCLUDE

    month = fields.Int(required=True, validate=_MONTH)
    year = fields.Int(required=True, validate=_YEAR)


class MonthlyExpenseSchema(Schema):
    """POST /households/:id/monthly-expense — payer_id defaults to the primary holder."""

    month = fields.Int(required=True, strict=True, validate=_MONTH)
    year = fields.Int(required=True, strict=True, validate=_YEAR)
    payer_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, error="payer_id must be a positive integer."),
    )
