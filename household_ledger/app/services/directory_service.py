"""
services/directory_service.py — Household membership and role resolution.

Every other service asks this module "is this user in this household, and in
what role?" before touching ledger data. It never writes.

Error mapping:
  HOUSEHOLD_NOT_FOUND (404) — the household id does not exist
  NOT_A_MEMBER        (403) — the household exists, the caller is not listed
  FORBIDDEN           (403) — listed, but the role is not allowed

Member order is join order (joined_at, then membership id). The allocation
engine hands out remainder cents in this order, so it must be stable.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from household_ledger.app.errors import ErrorCode, ForbiddenError, NotFoundError
from household_ledger.app.models.household import Household
from household_ledger.app.models.household_member import HouseholdMember, MemberRole


@dataclass(frozen=True)
class MembershipInfo:
    household_id: int
    user_id: int
    role: MemberRole
    joined_at: datetime | None

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN


def get_household_or_404(household_id: int, session: Session) -> Household:
    """Returns the Household or raises HOUSEHOLD_NOT_FOUND (404)."""
    household = session.get(Household, household_id)
    if household is None:
        raise NotFoundError(
            ErrorCode.HOUSEHOLD_NOT_FOUND,
            f"Household {household_id} does not exist.",
        )
    return household


def find_membership(
        household_id: int,
        user_id: int,
        session: Session,
) -> HouseholdMember | None:
    return session.execute(
        select(HouseholdMember).where(
            HouseholdMember.household_id == household_id,
            HouseholdMember.user_id == user_id,
        )
    ).scalar_one_or_none()


def is_member(household_id: int, user_id: int, session: Session) -> MembershipInfo:
    """
    Resolves the caller's membership in a household.

    Raises:
        NotFoundError(HOUSEHOLD_NOT_FOUND, 404) — household does not exist.
        ForbiddenError(NOT_A_MEMBER, 403)       — user is not listed.
    """
    get_household_or_404(household_id, session)

    membership = find_membership(household_id, user_id, session)
    if membership is None:
        raise ForbiddenError(
            ErrorCode.NOT_A_MEMBER,
            f"You are not a member of household {household_id}.",
        )

    return MembershipInfo(
        household_id=household_id,
        user_id=user_id,
        role=membership.role,
        joined_at=membership.joined_at,
    )


def require_role(membership: MembershipInfo, allowed_roles: Iterable[MemberRole]) -> None:
    """Raises FORBIDDEN (403) unless membership.role is one of allowed_roles."""
    allowed = set(allowed_roles)
    if membership.role not in allowed:
        names = ", ".join(sorted(role.value for role in allowed))
        raise ForbiddenError(
            ErrorCode.FORBIDDEN,
            f"This action requires one of these roles: {names}.",
        )


def member_ids(household_id: int, session: Session) -> list[int]:
    """Returns the user ids of all members, in join order."""
    stmt = (
        select(HouseholdMember.user_id)
        .where(HouseholdMember.household_id == household_id)
        .order_by(HouseholdMember.joined_at.asc(), HouseholdMember.id.asc())
    )
    return list(session.execute(stmt).scalars().all())
