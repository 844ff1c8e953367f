"""
schemas/settlement_schema.py — Marshmallow schema for the settle endpoint.

Whether the user actually has an obligation on the expense is checked in
services/settlement_service.py (OBLIGATION_NOT_FOUND, 404).
"""

from __future__ import annotations

from marshmallow import Schema, fields, validate


class SettleObligationSchema(Schema):
    """POST /expenses/:id/settle — user_id is the member whose obligation is settled."""

    user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )
