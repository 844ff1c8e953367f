"""
services/household_service.py — Household and membership management.

Authorization rules:
  - Create:              any authenticated user; the creator becomes admin
  - Read:                members only
  - Add member:          admins only
  - Set primary holder:  admins only; the holder must be a current member

Users themselves are provisioned by the identity collaborator. This module
only references existing user rows.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
"""

from __future__ import annotations

import secrets

from sqlalchemy import select
from sqlalchemy.orm import Session

from household_ledger.app.errors import (
    AppError,
    BusinessRuleError,
    ConflictError,
    ErrorCode,
    NotFoundError,
)
from household_ledger.app.models.household import Household
from household_ledger.app.models.household_member import HouseholdMember, MemberRole
from household_ledger.app.models.user import User
from household_ledger.app.services import directory_service
from household_ledger.app.unit_of_work import unit_of_work

JOIN_CODE_BYTES = 5
JOIN_CODE_ATTEMPTS = 5


# ── Private helpers ────────────────────────────────────────────────────────

def _get_user_or_404(user_id: int, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            field="user_id",
        )
    return user


def _new_join_code(session: Session) -> str:
    """Random 10-character code not used by any other household."""
    for _ in range(JOIN_CODE_ATTEMPTS):
        code = secrets.token_hex(JOIN_CODE_BYTES).upper()
        taken = session.execute(
            select(Household.id).where(Household.join_code == code)
        ).scalar_one_or_none()
        if taken is None:
            return code
    raise AppError(
        ErrorCode.INTERNAL_ERROR,
        "Could not generate a unique join code.",
        500,
    )


# ── Public service functions ───────────────────────────────────────────────

def create_household(
        name: str,
        creator_id: int,
        session: Session,
        currency: str | None = None,
) -> Household:
    """
    Creates a household. The creator is its first member, with role admin.

    The unique join code is a unique key: a colliding concurrent insert is
    reported as transient and retried by the route.
    """
    with unit_of_work(session, integrity_is_transient=True):
        _get_user_or_404(creator_id, session)

        household = Household(
            name=name,
            join_code=_new_join_code(session),
            currency=currency or "INR",
        )
        session.add(household)
        session.flush()  # populate household.id before creating the membership

        session.add(
            HouseholdMember(
                household_id=household.id,
                user_id=creator_id,
                role=MemberRole.ADMIN,
            )
        )
        session.flush()

    return household


def get_household(household_id: int, caller_id: int, session: Session) -> Household:
    """Returns the household with its ordered member list. Members only."""
    directory_service.is_member(household_id, caller_id, session)
    return directory_service.get_household_or_404(household_id, session)


def add_member(
        household_id: int,
        caller_id: int,
        target_user_id: int,
        session: Session,
        role: MemberRole = MemberRole.MEMBER,
) -> HouseholdMember:
    """
    Adds a user to a household. Admins only.

    Raises:
      HOUSEHOLD_NOT_FOUND (404), NOT_A_MEMBER (403), FORBIDDEN (403),
      USER_NOT_FOUND (404), ALREADY_MEMBER (409)
    """
    with unit_of_work(session):
        membership = directory_service.is_member(household_id, caller_id, session)
        directory_service.require_role(membership, [MemberRole.ADMIN])

        _get_user_or_404(target_user_id, session)

        if directory_service.find_membership(household_id, target_user_id, session) is not None:
            raise ConflictError(
                ErrorCode.ALREADY_MEMBER,
                f"User {target_user_id} is already a member of household {household_id}.",
                field="user_id",
            )

        member = HouseholdMember(
            household_id=household_id,
            user_id=target_user_id,
            role=role,
        )
        session.add(member)
        session.flush()

    return member


def set_primary_holder(
        household_id: int,
        caller_id: int,
        holder_user_id: int | None,
        session: Session,
) -> Household:
    """
    Designates (or, with None, clears) the household's primary payer. Admins only.

    Raises PRIMARY_HOLDER_NOT_MEMBER (422) if the user is not a current member.
    """
    with unit_of_work(session):
        membership = directory_service.is_member(household_id, caller_id, session)
        directory_service.require_role(membership, [MemberRole.ADMIN])
        household = directory_service.get_household_or_404(household_id, session)

        if holder_user_id is not None and (
            directory_service.find_membership(household_id, holder_user_id, session) is None
        ):
            raise BusinessRuleError(
                ErrorCode.PRIMARY_HOLDER_NOT_MEMBER,
                f"User {holder_user_id} is not a member of household {household_id}.",
                field="user_id",
            )

        household.primary_holder_user_id = holder_user_id
        session.flush()

    return household
