"""
models/household_member.py — Household membership table definition.

No business logic. No imports from services or routes.

FK policy: user_id and household_id both ON DELETE RESTRICT — neither a user
nor a household can be deleted while memberships exist.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from household_ledger.app.extensions import db


class MemberRole(str, enum.Enum):
    ADMIN  = "admin"
    MEMBER = "member"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'admin'), not names ('ADMIN')."""
    return [member.value for member in enum_cls]


class HouseholdMember(db.Model):
    __tablename__ = "household_members"

    __table_args__ = (
        # A user can only appear once in a household's member list.
        UniqueConstraint("household_id", "user_id", name="uq_household_members_household_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    household_id: Mapped[int] = mapped_column(
        ForeignKey("households.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Stored as VARCHAR so the same model works on PostgreSQL and SQLite.
    role: Mapped[MemberRole] = mapped_column(
        Enum(
            MemberRole,
            name="member_role_enum",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=MemberRole.MEMBER,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="memberships",
    )

    household: Mapped["Household"] = relationship(  # noqa: F821
        "Household",
        back_populates="members",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<HouseholdMember id={self.id} "
            f"household_id={self.household_id} "
            f"user_id={self.user_id} "
            f"role={self.role.value}>"
        )
