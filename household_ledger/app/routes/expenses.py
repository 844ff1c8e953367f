"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns BOTH the household-scoped paths (/households/:id/expenses) and the
expense-ID paths (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - The service commits through its unit of work; mutating calls go through
    run_mutation() so transient storage conflicts are retried.

Endpoints:
  POST   /households/:id/expenses   → 201  create expense (JSON or multipart)
  GET    /households/:id/expenses   → 200  paginated, filtered list
  GET    /expenses/:id              → 200  expense + obligations + attachments
  PATCH  /expenses/:id              → 200  partial update (editable fields only)
  DELETE /expenses/:id              → 200  hard delete (creator or admin)

Multipart create: the expense JSON goes in a form field named `payload`, the
files in one or more `files` parts.
"""

from __future__ import annotations

import json

from flask import Blueprint, current_app, g, jsonify, request

from household_ledger.app.errors import ErrorCode, ValidationFailed
from household_ledger.app.extensions import db
from household_ledger.app.middleware.auth_middleware import require_auth
from household_ledger.app.routes.common import (
    attachment_store,
    run_mutation,
    serialize_expense,
)
from household_ledger.app.schemas.expense_schema import (
    CreateExpenseSchema,
    ExpenseListQuerySchema,
    PatchExpenseSchema,
)
from household_ledger.app.services import expense_service
from household_ledger.app.storage.attachments import AttachmentUpload

expenses_bp = Blueprint("expenses", __name__)


def _read_request() -> tuple[dict, list[AttachmentUpload]]:
    """
    Returns (raw payload, files) for a JSON or multipart body. Files are read
    into memory once here so a retried mutation can upload them again.
    """
    if request.mimetype != "multipart/form-data":
        return request.get_json(force=True, silent=True) or {}, []

    raw = request.form.get("payload", "{}")
    try:
        payload = json.loads(raw)
    except ValueError:
        raise ValidationFailed(
            ErrorCode.INVALID_FIELD,
            "The payload form field must contain a JSON object.",
            field="payload",
        )
    if not isinstance(payload, dict):
        raise ValidationFailed(
            ErrorCode.INVALID_FIELD,
            "The payload form field must contain a JSON object.",
            field="payload",
        )

    files = [
        AttachmentUpload(
            filename=storage.filename or "attachment",
            content=storage.read(),
            content_type=storage.mimetype,
        )
        for storage in request.files.getlist("files")
        if storage
    ]
    return payload, files


# ── Household-scoped expense routes ────────────────────────────────────────

@expenses_bp.route("/households/<int:household_id>/expenses", methods=["POST"])
@require_auth
def create_expense(household_id: int):
    """POST /households/:id/expenses — Record a new expense."""
    payload, files = _read_request()
    data = CreateExpenseSchema().load(payload)
    store = attachment_store()
    max_attachments = current_app.config.get("MAX_ATTACHMENTS", 5)

    expense = run_mutation(
        lambda: expense_service.create_expense(
            household_id=household_id,
            caller_id=g.user_id,
            data=data,
            session=db.session,
            attachment_store=store,
            files=files,
            max_attachments=max_attachments,
        )
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 201


@expenses_bp.route("/households/<int:household_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(household_id: int):
    """GET /households/:id/expenses — One page of expenses, newest first."""
    query = ExpenseListQuerySchema().load(request.args.to_dict())
    page = expense_service.list_expenses(
        household_id=household_id,
        caller_id=g.user_id,
        filters=query,
        page=query["page"],
        limit=query["limit"],
        session=db.session,
    )
    return jsonify({
        "data": {
            "items": [serialize_expense(e) for e in page.items],
            "total": page.total,
            "page": page.page,
            "limit": page.limit,
            "pages": page.pages,
            "has_next": page.has_next,
            "has_prev": page.has_prev,
        },
        "warnings": [],
    }), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: int):
    """GET /expenses/:id — Expense detail including obligations."""
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PATCH"])
@require_auth
def update_expense(expense_id: int):
    """PATCH /expenses/:id — Partial update; multipart `files` add attachments."""
    payload, files = _read_request()
    data = PatchExpenseSchema().load(payload) if payload or not files else {}
    store = attachment_store()
    max_attachments = current_app.config.get("MAX_ATTACHMENTS", 5)
    expense = run_mutation(
        lambda: expense_service.update_expense(
            expense_id=expense_id,
            caller_id=g.user_id,
            data=data,
            session=db.session,
            attachment_store=store,
            files=files,
            max_attachments=max_attachments,
        )
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — Remove the expense; the audit trail keeps a snapshot."""
    store = attachment_store()
    run_mutation(
        lambda: expense_service.delete_expense(
            expense_id=expense_id,
            caller_id=g.user_id,
            session=db.session,
            attachment_store=store,
        )
    )
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": [],
    }), 200
