"""
schemas/common.py — Field types and validators shared by the request schemas.

Convention (see the ValidationError handler in app/__init__.py): a validator
may raise ValidationError with an ErrorCode constant as its message. The
handler then reports that code instead of INVALID_FIELD.

IMPORTANT: Schemas inherit from marshmallow.Schema directly.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from marshmallow import ValidationError, fields

from household_ledger.app.errors import ErrorCode
from household_ledger.app.services.allocation import MAX_AMOUNT


def validate_money(value: Decimal) -> None:
    """Zero up to MAX_AMOUNT, at most 2 decimal places. Never rounded or truncated."""
    if not value.is_finite() or value < Decimal("0") or value > MAX_AMOUNT:
        raise ValidationError(ErrorCode.INVALID_AMOUNT)
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class LedgerDate(fields.Field):
    """
    Accepts "YYYY-MM-DD" or a full ISO-8601 timestamp and loads a date.

    Timestamps with an offset are converted to UTC first, so
    "2026-03-01T01:30:00+05:30" is the UTC day 2026-02-28.
    """

    default_error_messages = {
        "invalid": "Not a valid ISO-8601 date or timestamp.",
    }

    def _serialize(self, value, attr, obj, **kwargs):
        if value is None:
            return None
        return value.isoformat()

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            return value
        elif isinstance(value, str):
            text = value.strip()
            try:
                if len(text) == 10:
                    return date.fromisoformat(text)
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError as exc:
                raise self.make_error("invalid") from exc
        else:
            raise self.make_error("invalid")

        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        return parsed.date()
