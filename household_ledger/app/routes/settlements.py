"""
routes/settlements.py — Settlement route handler.

Layer rules:
  - Parse, validate, call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1):
  POST   /expenses/:id/settle  → 200  mark one member's obligation settled
                                 409  ALREADY_SETTLED on a repeat
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from household_ledger.app.extensions import db
from household_ledger.app.middleware.auth_middleware import require_auth
from household_ledger.app.routes.common import run_mutation, serialize_expense
from household_ledger.app.schemas.settlement_schema import SettleObligationSchema
from household_ledger.app.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


@settlements_bp.route("/expenses/<int:expense_id>/settle", methods=["POST"])
@require_auth
def settle_obligation(expense_id: int):
    """
    POST /expenses/:id/settle — Mark the obligation of body.user_id as settled.

    Any household member may record it. The response is the whole expense so
    the client sees every obligation's current state.
    """
    data = SettleObligationSchema().load(request.get_json(force=True, silent=True) or {})
    expense = run_mutation(
        lambda: settlement_service.mark_settled(
            expense_id=expense_id,
            owed_by_user_id=data["user_id"],
            caller_id=g.user_id,
            session=db.session,
        )
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 200
