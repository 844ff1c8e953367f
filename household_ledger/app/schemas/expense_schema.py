"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, decimal precision
      - DUPLICATE_OBLIGATION_USER (400) — request shape rule
      - PATCH accepts only the editable fields; anything else is an unknown
        field and rejected (INVALID_FIELD)
      - List query ranges and the named filter (INVALID_FILTER)
  - services/expense_service.py and services/allocation.py:
      - PAYER_NOT_MEMBER / OBLIGATION_USER_NOT_MEMBER (422) — membership lookup
      - OBLIGATIONS_EXCEED_AMOUNT (400) — needs the effective amount
      - Delete permission (FORBIDDEN, 403) — needs the expense row
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate, validates_schema

from household_ledger.app.errors import ErrorCode
from household_ledger.app.schemas.common import (
    LedgerDate,
    validate_money,
    validate_non_empty_after_trim,
)

_CURRENCY = validate.Regexp(r"^[A-Z]{3}$", error="currency must be a 3-letter ISO code, e.g. INR.")


def _check_duplicate_obligation_users(obligations) -> None:
    if not obligations:
        return
    user_ids = [o["user_id"] for o in obligations]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError(ErrorCode.DUPLICATE_OBLIGATION_USER, "obligations")


# ── Sub-schema: one entry in the `obligations` array ──────────────────────

class ObligationInputSchema(Schema):
    """Membership of user_id is checked in the service, not here."""

    user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    amount = fields.Decimal(required=True, validate=validate_money)

    note = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=255),
    )


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /households/:id/expenses

    paid_by_user_id defaults to the caller. personal_money left out means
    "decide from the primary holder". A non-empty obligations array
    bypasses the allocation policy.
    """

    paid_by_user_id = fields.Int(
        load_default=None,
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    amount = fields.Decimal(required=True, validate=validate_money)

    currency = fields.Str(load_default=None, validate=_CURRENCY)

    category = fields.Str(
        load_default=None,
        validate=[validate.Length(min=1, max=50), validate_non_empty_after_trim],
    )

    note = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=1000),
    )

    expense_date = LedgerDate(load_default=None)

    personal_money = fields.Bool(load_default=None, allow_none=True)

    obligations = fields.List(
        fields.Nested(ObligationInputSchema),
        load_default=None,
    )

    @validates_schema
    def validate_obligations(self, data: dict, **kwargs) -> None:
        _check_duplicate_obligation_users(data.get("obligations"))


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """
    PATCH /expenses/:id

    No load defaults: a key is present in the loaded dict only if the client
    sent it, which is how the service tells "unchanged" from "cleared".
    """

    amount = fields.Decimal(validate=validate_money)
    currency = fields.Str(validate=_CURRENCY)
    category = fields.Str(validate=[validate.Length(min=1, max=50), validate_non_empty_after_trim])
    note = fields.Str(allow_none=True, validate=validate.Length(max=1000))
    expense_date = LedgerDate()
    obligations = fields.List(fields.Nested(ObligationInputSchema))
    remove_attachment_ids = fields.List(fields.Int(strict=True))

    @validates_schema
    def validate_patch(self, data: dict, **kwargs) -> None:
        if not data:
            raise ValidationError("Provide at least one field to update.")
        _check_duplicate_obligation_users(data.get("obligations"))


# ── List query ─────────────────────────────────────────────────────────────

class ExpenseListQuerySchema(Schema):
    """GET /households/:id/expenses query string."""

    class Meta:
        unknown = EXCLUDE

    page = fields.Int(
        load_default=1,
        validate=validate.Range(min=1, error=ErrorCode.INVALID_FILTER),
    )
    limit = fields.Int(
        load_default=20,
        validate=validate.Range(min=1, max=100, error=ErrorCode.INVALID_FILTER),
    )
    month = fields.Int(
        load_default=None,
        validate=validate.Range(min=1, max=12, error=ErrorCode.INVALID_FILTER),
    )
    year = fields.Int(
        load_default=None,
        validate=validate.Range(min=1970, max=9999, error=ErrorCode.INVALID_FILTER),
    )
    payer_id = fields.Int(load_default=None)
    search = fields.Str(load_default=None, validate=validate.Length(max=100))
    filter = fields.Str(
        load_default="all",
        validate=validate.OneOf(["all", "unpaid", "mine"], error=ErrorCode.INVALID_FILTER),
    )

    @validates_schema
    def validate_period(self, data: dict, **kwargs) -> None:
        if data.get("month") is not None and data.get("year") is None:
            raise ValidationError(ErrorCode.INVALID_FILTER, "month")
