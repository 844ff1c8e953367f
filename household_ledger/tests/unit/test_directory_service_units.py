"""
Unit tests for directory_service: membership resolution and role checks.

DB-free via mocked session/query behavior.
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from household_ledger.app.errors import AppError, ErrorCode
from household_ledger.app.models.household_member import MemberRole
from household_ledger.app.services import directory_service


def _session(household=None, membership=None) -> MagicMock:
    session = MagicMock()
    session.get.return_value = household
    session.execute.return_value.scalar_one_or_none.return_value = membership
    return session


def test_is_member_raises_household_not_found():
    with pytest.raises(AppError) as exc_info:
        directory_service.is_member(404, 1, _session(household=None))

    err = exc_info.value
    assert err.code == ErrorCode.HOUSEHOLD_NOT_FOUND
    assert err.http_status == 404


def test_is_member_raises_not_a_member():
    session = _session(household=SimpleNamespace(id=1), membership=None)

    with pytest.raises(AppError) as exc_info:
        directory_service.is_member(1, 99, session)

    err = exc_info.value
    assert err.code == ErrorCode.NOT_A_MEMBER
    assert err.http_status == 403


def test_is_member_returns_membership_info():
    joined = datetime(2026, 1, 1, tzinfo=timezone.utc)
    session = _session(
        household=SimpleNamespace(id=1),
        membership=SimpleNamespace(role=MemberRole.ADMIN, joined_at=joined),
    )

    info = directory_service.is_member(1, 7, session)

    assert info.household_id == 1
    assert info.user_id == 7
    assert info.role == MemberRole.ADMIN
    assert info.joined_at == joined
    assert info.is_admin is True


def test_require_role_allows_listed_role():
    info = directory_service.MembershipInfo(1, 7, MemberRole.MEMBER, None)
    directory_service.require_role(info, [MemberRole.ADMIN, MemberRole.MEMBER])


def test_require_role_rejects_other_roles():
    info = directory_service.MembershipInfo(1, 7, MemberRole.MEMBER, None)

    with pytest.raises(AppError) as exc_info:
        directory_service.require_role(info, [MemberRole.ADMIN])

    err = exc_info.value
    assert err.code == ErrorCode.FORBIDDEN
    assert err.http_status == 403
    assert "admin" in err.message


def test_member_ids_returns_query_order():
    session = MagicMock()
    session.execute.return_value.scalars.return_value.all.return_value = [3, 1, 2]

    assert directory_service.member_ids(1, session) == [3, 1, 2]
