"""
services/expense_service.py — Ledger Transaction Manager.

Atomic create / read / update / delete / list of expenses.

Every write path runs inside unit_of_work(): the expense row, its
obligations, its attachment rows and the audit entry are committed together
or not at all.

Authorization rules:
  - Create, list, get, update: caller must be a household member (403 NOT_A_MEMBER)
  - Delete: caller must be the expense creator or a household admin (403 FORBIDDEN)

Obligations:
  - Create: computed by the allocation engine unless the caller sends an
    explicit, non-empty `obligations` list.
  - Update: sending `obligations` replaces the list (validated as explicit
    obligations against the new or current amount). A replaced obligation
    keeps its settled state only if the same user owes the same amount.
  - Changing only the amount never re-allocates. It fails with
    OBLIGATIONS_EXCEED_AMOUNT if the existing obligations no longer fit.

Attachments:
  - Uploaded inside the unit of work. Each upload registers a compensating
    delete, so a failed create leaves nothing behind in storage.
  - Files removed by update/delete are deleted from storage after the commit.
    A storage failure there is logged; the ledger change stands.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from functools import partial
from typing import Iterable, Sequence

from sqlalchemy import exists, extract, func, or_, select
from sqlalchemy.orm import Session

from household_ledger.app.errors import (
    BusinessRuleError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    ValidationFailed,
)
from household_ledger.app.models.audit_entry import AuditAction
from household_ledger.app.models.expense import DEFAULT_CATEGORY, Attachment, Expense
from household_ledger.app.models.household import Household
from household_ledger.app.models.household_member import MemberRole
from household_ledger.app.models.obligation import Obligation
from household_ledger.app.services import allocation, audit_service, directory_service
from household_ledger.app.storage.attachments import (
    AttachmentStore,
    AttachmentUpload,
    StoredAttachment,
)
from household_ledger.app.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTACHMENTS = 5

LIST_FILTERS = ("all", "unpaid", "mine")


@dataclass(frozen=True)
class ExpensePage:
    items: list[Expense]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


# ── Private helpers ────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
        )
    return expense


def _validate_payer_is_member(payer_id: int, household_id: int, members: Sequence[int]) -> None:
    if payer_id not in members:
        raise BusinessRuleError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {payer_id} is not a member of household {household_id}.",
            field="paid_by_user_id",
        )


def _to_shares(raw: Iterable[dict]) -> list[allocation.ObligationShare]:
    """Converts schema-validated obligation dicts to ObligationShare values."""
    return [
        allocation.ObligationShare(
            user_id=item["user_id"],
            amount=item["amount"],
            note=item.get("note"),
        )
        for item in raw
    ]


def _upload_attachments(
        uow,
        attachment_store: AttachmentStore,
        files: Sequence[AttachmentUpload],
) -> list[StoredAttachment]:
    stored: list[StoredAttachment] = []
    for file in files:
        result = attachment_store.upload(file)
        uow.on_failure(
            f"delete uploaded attachment {result.public_id}",
            partial(attachment_store.delete, result.public_id),
        )
        stored.append(result)
    return stored


def _delete_from_storage(attachment_store: AttachmentStore | None, public_ids: Sequence[str]) -> None:
    """Best-effort storage cleanup after a committed change."""
    if attachment_store is None:
        return
    for public_id in public_ids:
        try:
            if not attachment_store.delete(public_id):
                logger.warning("Attachment %s was not found in storage", public_id)
        except Exception:
            logger.exception("Could not delete attachment %s from storage", public_id)


def _check_attachment_count(files: Sequence[AttachmentUpload], max_attachments: int) -> None:
    if len(files) > max_attachments:
        raise ValidationFailed(
            ErrorCode.TOO_MANY_ATTACHMENTS,
            f"At most {max_attachments} attachments are allowed per expense.",
            field="files",
        )


def _replace_obligations(
        expense: Expense,
        shares: Sequence[allocation.ObligationShare],
        session: Session,
) -> None:
    previous = {o.user_id: o for o in expense.obligations}

    # Flush the removals first: (expense_id, user_id) is unique.
    expense.obligations.clear()
    session.flush()

    for position, share in enumerate(shares):
        old = previous.get(share.user_id)
        keep_settlement = old is not None and old.settled and old.amount == share.amount
        expense.obligations.append(
            Obligation(
                user_id=share.user_id,
                amount=share.amount,
                note=share.note,
                position=position,
                settled=keep_settlement,
                settled_at=old.settled_at if keep_settlement else None,
            )
        )


# ── Shared atomic path ─────────────────────────────────────────────────────

def persist_expense(
        session: Session,
        household: Household,
        actor_id: int,
        payer_id: int,
        amount: Decimal,
        shares: Sequence[allocation.ObligationShare],
        *,
        currency: str | None = None,
        category: str | None = None,
        note: str | None = None,
        expense_date: date | None = None,
        attachments: Sequence[StoredAttachment] = (),
        action: AuditAction = AuditAction.CREATED,
) -> Expense:
    """
    Writes an expense, its obligations, its attachment rows and one audit entry.

    Must run inside the caller's unit_of_work(). Used by create_expense() and
    by the periodic aggregator's monthly entry.
    """
    expense = Expense(
        household_id=household.id,
        created_by_user_id=actor_id,
        paid_by_user_id=payer_id,
        amount=amount,
        currency=currency or household.currency,
        category=category or DEFAULT_CATEGORY,
        note=note,
        expense_date=expense_date or _utcnow().date(),
    )
    expense.obligations = [
        Obligation(
            user_id=share.user_id,
            amount=share.amount,
            note=share.note,
            position=position,
            settled=False,
        )
        for position, share in enumerate(shares)
    ]
    expense.attachments = [
        Attachment(url=stored.url, public_id=stored.public_id)
        for stored in attachments
    ]
    session.add(expense)
    session.flush()  # populate expense.id for the audit entry

    audit_service.record(
        session,
        household_id=household.id,
        actor_user_id=actor_id,
        action=action,
        expense_id=expense.id,
        after=audit_service.snapshot_expense(expense),
    )
    return expense


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        household_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        attachment_store: AttachmentStore | None = None,
        files: Sequence[AttachmentUpload] = (),
        max_attachments: int = DEFAULT_MAX_ATTACHMENTS,
) -> Expense:
    """
    Records a new expense for a household.

    Args:
        household_id: The household this expense belongs to.
        caller_id:    The authenticated user recording the expense.
        data:         Validated dict from CreateExpenseSchema.
        files:        Attachments already read into memory by the route.

    Raises:
        NOT_A_MEMBER (403), PAYER_NOT_MEMBER (422), INVALID_AMOUNT (400),
        any explicit-obligation error from allocation.validate_explicit,
        TOO_MANY_ATTACHMENTS (400), ATTACHMENT_UPLOAD_FAILED (502).
    """
    files = list(files)
    _check_attachment_count(files, max_attachments)
    if files and attachment_store is None:
        raise ValueError("An attachment store is required to store files.")

    with unit_of_work(session) as uow:
        directory_service.is_member(household_id, caller_id, session)
        household = directory_service.get_household_or_404(household_id, session)
        members = directory_service.member_ids(household_id, session)

        payer_id = data.get("paid_by_user_id") or caller_id
        _validate_payer_is_member(payer_id, household_id, members)

        amount = allocation.validate_total(data["amount"])
        explicit = _to_shares(data["obligations"]) if data.get("obligations") else None
        policy = allocation.select_policy(
            payer_id,
            household.primary_holder_user_id,
            personal_money=data.get("personal_money"),
            explicit=explicit,
        )
        shares = allocation.allocate(amount, payer_id, members, policy)

        stored = _upload_attachments(uow, attachment_store, files) if files else []

        expense = persist_expense(
            session,
            household,
            actor_id=caller_id,
            payer_id=payer_id,
            amount=amount,
            shares=shares,
            currency=data.get("currency"),
            category=data.get("category"),
            note=data.get("note"),
            expense_date=data.get("expense_date"),
            attachments=stored,
        )

    logger.info(
        "Expense %s created in household %s (%s, %d obligations)",
        expense.id, household_id, type(policy).__name__, len(shares),
    )
    return expense


def get_expense(expense_id: int, caller_id: int, session: Session) -> Expense:
    """Returns a single expense. Caller must be a member of its household."""
    expense = _get_expense_or_404(expense_id, session)
    directory_service.is_member(expense.household_id, caller_id, session)
    return expense


def update_expense(
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        attachment_store: AttachmentStore | None = None,
        files: Sequence[AttachmentUpload] = (),
        max_attachments: int = DEFAULT_MAX_ATTACHMENTS,
) -> Expense:
    """
    Partially updates an expense.

    Only amount, currency, category, note, expense_date, obligations and
    attachments may change. The schema rejects anything else. Attachments
    are removed by id (remove_attachment_ids) and added as `files`; the
    total after both must stay within max_attachments. New uploads are
    deleted again if the update fails. One "edited" audit entry with before
    and after snapshots is written in the same unit of work.
    """
    files = list(files)
    _check_attachment_count(files, max_attachments)
    if files and attachment_store is None:
        raise ValueError("An attachment store is required to store files.")

    removed_public_ids: list[str] = []

    with unit_of_work(session) as uow:
        expense = _get_expense_or_404(expense_id, session)
        directory_service.is_member(expense.household_id, caller_id, session)

        before = audit_service.snapshot_expense(expense)

        amount = (
            allocation.validate_total(data["amount"])
            if "amount" in data
            else expense.amount
        )

        if "obligations" in data:
            members = directory_service.member_ids(expense.household_id, session)
            shares = allocation.validate_explicit(_to_shares(data["obligations"]), amount, members)
            _replace_obligations(expense, shares, session)
        elif amount != expense.amount and expense.obligation_total > amount:
            raise ValidationFailed(
                ErrorCode.OBLIGATIONS_EXCEED_AMOUNT,
                f"Existing obligations ({expense.obligation_total}) exceed the new amount ({amount}).",
                field="amount",
            )

        expense.amount = amount

        if "currency" in data:
            expense.currency = data["currency"]
        if "category" in data:
            expense.category = data["category"] or DEFAULT_CATEGORY
        if "note" in data:
            expense.note = data["note"]
        if "expense_date" in data:
            expense.expense_date = data["expense_date"]

        remove_ids = set(data.get("remove_attachment_ids") or ())
        if remove_ids:
            by_id = {a.id: a for a in expense.attachments}
            unknown = sorted(remove_ids - by_id.keys())
            if unknown:
                raise ValidationFailed(
                    ErrorCode.INVALID_FIELD,
                    f"Attachment(s) {unknown} do not belong to expense {expense_id}.",
                    field="remove_attachment_ids",
                )
            for attachment_id in sorted(remove_ids):
                attachment = by_id[attachment_id]
                removed_public_ids.append(attachment.public_id)
                expense.attachments.remove(attachment)

        if files:
            _check_attachment_count([*expense.attachments, *files], max_attachments)
            for stored in _upload_attachments(uow, attachment_store, files):
                expense.attachments.append(Attachment(url=stored.url, public_id=stored.public_id))

        expense.updated_at = _utcnow()
        session.flush()

        audit_service.record(
            session,
            household_id=expense.household_id,
            actor_user_id=caller_id,
            action=AuditAction.EDITED,
            expense_id=expense.id,
            before=before,
            after=audit_service.snapshot_expense(expense),
        )

    _delete_from_storage(attachment_store, removed_public_ids)
    return expense


def delete_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
        attachment_store: AttachmentStore | None = None,
) -> None:
    """
    Hard-deletes an expense together with its obligations and attachment rows.

    Authorization: the expense creator or a household admin.

    Raises:
        EXPENSE_NOT_FOUND (404) — expense does not exist.
        NOT_A_MEMBER (403)      — caller is not in the household.
        FORBIDDEN (403)         — caller is neither creator nor admin.
    """
    with unit_of_work(session):
        expense = _get_expense_or_404(expense_id, session)
        membership = directory_service.is_member(expense.household_id, caller_id, session)

        if expense.created_by_user_id != caller_id and membership.role != MemberRole.ADMIN:
            raise ForbiddenError(
                ErrorCode.FORBIDDEN,
                "Only the expense creator or a household admin may delete this expense.",
            )

        before = audit_service.snapshot_expense(expense)
        public_ids = [a.public_id for a in expense.attachments]
        household_id = expense.household_id

        session.delete(expense)
        session.flush()

        audit_service.record(
            session,
            household_id=household_id,
            actor_user_id=caller_id,
            action=AuditAction.DELETED,
            expense_id=expense_id,
            before=before,
        )

    logger.info("Expense %s deleted from household %s by user %s", expense_id, household_id, caller_id)
    _delete_from_storage(attachment_store, public_ids)


def list_expenses(
        household_id: int,
        caller_id: int,
        filters: dict,
        page: int,
        limit: int,
        session: Session,
) -> ExpensePage:
    """
    Returns one page of a household's expenses, newest first.

    Filters (all optional, validated by ExpenseListQuerySchema):
        month, year  — effective-date month (month needs a year; year alone = whole year)
        payer_id     — only expenses paid by this user
        search       — case-insensitive substring of category or note
        filter       — "unpaid" (at least one unsettled obligation),
                       "mine" (caller is the payer) or "all"

    Order: expense_date desc, created_at desc, id desc.
    """
    directory_service.is_member(household_id, caller_id, session)

    if page < 1 or not 1 <= limit <= 100:
        raise ValidationFailed(
            ErrorCode.INVALID_FILTER,
            "page must be >= 1 and limit between 1 and 100.",
        )

    conditions = [Expense.household_id == household_id]

    year = filters.get("year")
    month = filters.get("month")
    if month is not None and year is None:
        raise ValidationFailed(ErrorCode.INVALID_FILTER, "month requires year.", field="month")
    if year is not None:
        conditions.append(extract("year", Expense.expense_date) == year)
    if month is not None:
        conditions.append(extract("month", Expense.expense_date) == month)

    if filters.get("payer_id") is not None:
        conditions.append(Expense.paid_by_user_id == filters["payer_id"])

    named = filters.get("filter") or "all"
    if named not in LIST_FILTERS:
        raise ValidationFailed(
            ErrorCode.INVALID_FILTER,
            f"filter must be one of: {', '.join(LIST_FILTERS)}.",
            field="filter",
        )
    if named == "unpaid":
        conditions.append(
            exists().where(
                Obligation.expense_id == Expense.id,
                Obligation.settled.is_(False),
            )
        )
    elif named == "mine":
        conditions.append(Expense.paid_by_user_id == caller_id)

    search = (filters.get("search") or "").strip()
    if search:
        escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        conditions.append(
            or_(
                Expense.category.ilike(pattern, escape="\\"),
                Expense.note.ilike(pattern, escape="\\"),
            )
        )

    total = session.execute(
        select(func.count()).select_from(Expense).where(*conditions)
    ).scalar_one()

    stmt = (
        select(Expense)
        .where(*conditions)
        .order_by(
            Expense.expense_date.desc(),
            Expense.created_at.desc(),
            Expense.id.desc(),
        )
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list(session.execute(stmt).scalars().all())

    return ExpensePage(items=items, total=total, page=page, limit=limit)
