"""
routes/periodic.py — Daily quantity records and the monthly ledger entry.

Layer rules:
  - Parse, validate, call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/households):
  PUT    /households/:id/daily-records              → 200  upsert one day
  GET    /households/:id/daily-records?month&year   → 200  month's records + totals
  POST   /households/:id/monthly-expense            → 201  fold a month into one expense
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from household_ledger.app.extensions import db
from household_ledger.app.middleware.auth_middleware import require_auth
from household_ledger.app.routes.common import (
    periodic_settings,
    run_mutation,
    serialize_expense,
    serialize_month,
    serialize_record,
)
from household_ledger.app.schemas.periodic_schema import (
    DailyRecordSchema,
    MonthlyExpenseSchema,
    MonthQuerySchema,
)
from household_ledger.app.services import periodic_service

periodic_bp = Blueprint("periodic", __name__)


@periodic_bp.route("/<int:household_id>/daily-records", methods=["PUT"])
@require_auth
def upsert_daily_record(household_id: int):
    """PUT /households/:id/daily-records — Create or overwrite one day's quantity."""
    data = DailyRecordSchema().load(request.get_json(force=True, silent=True) or {})
    record = run_mutation(
        lambda: periodic_service.upsert_daily_record(
            household_id=household_id,
            caller_id=g.user_id,
            day=data["day"],
            quantity=data["quantity"],
            session=db.session,
        )
    )
    return jsonify({"data": serialize_record(record), "warnings": []}), 200


@periodic_bp.route("/<int:household_id>/daily-records", methods=["GET"])
@require_auth
def list_month(household_id: int):
    """GET /households/:id/daily-records — Records of one month, ascending by day."""
    query = MonthQuerySchema().load(request.args.to_dict())
    totals = periodic_service.list_month(
        household_id=household_id,
        caller_id=g.user_id,
        month=query["month"],
        year=query["year"],
        session=db.session,
        settings=periodic_settings(),
    )
    return jsonify({"data": serialize_month(totals), "warnings": []}), 200


@periodic_bp.route("/<int:household_id>/monthly-expense", methods=["POST"])
@require_auth
def create_monthly_expense(household_id: int):
    """POST /households/:id/monthly-expense — One pooled expense for the month's total."""
    data = MonthlyExpenseSchema().load(request.get_json(force=True, silent=True) or {})
    settings = periodic_settings()
    expense = run_mutation(
        lambda: periodic_service.materialize_monthly_expense(
            household_id=household_id,
            caller_id=g.user_id,
            month=data["month"],
            year=data["year"],
            session=db.session,
            payer_id=data.get("payer_id"),
            settings=settings,
        )
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 201
