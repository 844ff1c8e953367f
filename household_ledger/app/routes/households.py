"""
routes/households.py — Household and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/households):
  POST   /households                        → 201  create household (caller becomes admin)
  GET    /households/:id                    → 200  household + members in join order
  POST   /households/:id/members            → 201  add member (admin only)
  PUT    /households/:id/primary-holder     → 200  set or clear primary payer (admin only)
  GET    /households/:id/activity           → 200  audit entries, newest first
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from household_ledger.app.extensions import db
from household_ledger.app.middleware.auth_middleware import require_auth
from household_ledger.app.routes.common import (
    run_mutation,
    serialize_audit_entry,
    serialize_household,
    serialize_member,
)
from household_ledger.app.schemas.household_schema import (
    ActivityQuerySchema,
    AddMemberSchema,
    CreateHouseholdSchema,
    PrimaryHolderSchema,
)
from household_ledger.app.services import audit_service, household_service

households_bp = Blueprint("households", __name__)


@households_bp.route("", methods=["POST"])
@require_auth
def create_household():
    """POST /households — Create a household. Caller becomes its admin."""
    data = CreateHouseholdSchema().load(request.get_json(force=True, silent=True) or {})
    household = run_mutation(
        lambda: household_service.create_household(
            name=data["name"].strip(),
            creator_id=g.user_id,
            session=db.session,
            currency=data.get("currency") or current_app.config.get("DEFAULT_CURRENCY"),
        )
    )
    return jsonify({"data": serialize_household(household), "warnings": []}), 201


@households_bp.route("/<int:household_id>", methods=["GET"])
@require_auth
def get_household(household_id: int):
    """GET /households/:id — Household details with member list. Members only."""
    household = household_service.get_household(
        household_id=household_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": serialize_household(household), "warnings": []}), 200


@households_bp.route("/<int:household_id>/members", methods=["POST"])
@require_auth
def add_member(household_id: int):
    """POST /households/:id/members — Add a user to the household. Admins only."""
    data = AddMemberSchema().load(request.get_json(force=True, silent=True) or {})
    member = run_mutation(
        lambda: household_service.add_member(
            household_id=household_id,
            caller_id=g.user_id,
            target_user_id=data["user_id"],
            session=db.session,
            role=data["role"],
        )
    )
    return jsonify({"data": serialize_member(member), "warnings": []}), 201


@households_bp.route("/<int:household_id>/primary-holder", methods=["PUT"])
@require_auth
def set_primary_holder(household_id: int):
    """PUT /households/:id/primary-holder — body {"user_id": int | null}."""
    data = PrimaryHolderSchema().load(request.get_json(force=True, silent=True) or {})
    household = run_mutation(
        lambda: household_service.set_primary_holder(
            household_id=household_id,
            caller_id=g.user_id,
            holder_user_id=data["user_id"],
            session=db.session,
        )
    )
    return jsonify({"data": serialize_household(household), "warnings": []}), 200


@households_bp.route("/<int:household_id>/activity", methods=["GET"])
@require_auth
def list_activity(household_id: int):
    """GET /households/:id/activity — Most recent audit entries."""
    query = ActivityQuerySchema().load(request.args.to_dict())
    entries = audit_service.list_activity(
        household_id=household_id,
        caller_id=g.user_id,
        session=db.session,
        limit=query["limit"],
    )
    return jsonify({
        "data": [serialize_audit_entry(e) for e in entries],
        "warnings": [],
    }), 200
