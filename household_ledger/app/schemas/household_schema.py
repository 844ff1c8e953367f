"""
schemas/household_schema.py — Marshmallow schemas for household and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim).
  - services/household_service.py:
      - NOT_A_MEMBER / FORBIDDEN (membership and role need a DB lookup)
      - USER_NOT_FOUND, ALREADY_MEMBER, PRIMARY_HOLDER_NOT_MEMBER
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, validate

from household_ledger.app.models.household_member import MemberRole
from household_ledger.app.schemas.common import validate_non_empty_after_trim


class CreateHouseholdSchema(Schema):
    """
    POST /households

    The DB has CHECK(LENGTH(TRIM(name)) > 0). This schema rejects the same
    input before the service is called.
    """

    name = fields.Str(
        load_default="My Household",
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Household name must be between 1 and 100 characters.",
            ),
            validate_non_empty_after_trim,
        ],
    )

    currency = fields.Str(
        load_default=None,
        validate=validate.Regexp(r"^[A-Z]{3}$", error="currency must be a 3-letter ISO code, e.g. INR."),
    )


class AddMemberSchema(Schema):
    """POST /households/:id/members (admins only)."""

    # Whether the user exists is a DB concern (USER_NOT_FOUND, 404).
    user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    role = fields.Enum(MemberRole, by_value=True, load_default=MemberRole.MEMBER)


class PrimaryHolderSchema(Schema):
    """PUT /households/:id/primary-holder — null clears the designation."""

    user_id = fields.Int(
        required=True,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )


class ActivityQuerySchema(Schema):
    """GET /households/:id/activity"""

    class Meta:
        unknown = EXCLUDE

    limit = fields.Int(load_default=50, validate=validate.Range(min=1, max=200))
