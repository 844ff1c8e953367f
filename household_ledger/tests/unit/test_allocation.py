"""
tests/unit/test_allocation.py — Unit tests for services/allocation.py.

What this file proves:
  - Equal split: sum(obligations) == total exactly, no negative amounts
  - Remainder cents go to the first participants in the order given
  - The payer never owes under EqualSplit
  - select_policy picks pooled / primary holder / equal split / explicit
  - Explicit obligations are validated (precision, duplicates, membership, sum)

No database, no Flask. Pure Decimal arithmetic.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from household_ledger.app.errors import AppError, ErrorCode
from household_ledger.app.services.allocation import (
    ChargePrimaryHolder,
    EqualSplit,
    MAX_AMOUNT,
    Explicit,
    ObligationShare,
    PooledMoney,
    allocate,
    equal_split,
    select_policy,
    validate_explicit,
    validate_total,
)


def _pairs(shares: list[ObligationShare]) -> list[tuple[int, Decimal]]:
    return [(s.user_id, s.amount) for s in shares]


# ── Equal split ────────────────────────────────────────────────────────────

def test_two_members_other_owes_everything():
    shares = allocate(Decimal("100.00"), payer_id=1, member_ids=[1, 2], policy=EqualSplit())
    assert _pairs(shares) == [(2, Decimal("100.00"))]


def test_three_members_fifty_fifty():
    shares = allocate(Decimal("100.00"), payer_id=1, member_ids=[1, 2, 3], policy=EqualSplit())
    assert _pairs(shares) == [(2, Decimal("50.00")), (3, Decimal("50.00"))]


def test_ten_among_three_others():
    shares = allocate(Decimal("10.00"), payer_id=9, member_ids=[9, 4, 5, 6], policy=EqualSplit())
    assert _pairs(shares) == [
        (4, Decimal("3.34")),
        (5, Decimal("3.33")),
        (6, Decimal("3.33")),
    ]


def test_payer_in_the_middle_is_skipped():
    shares = allocate(Decimal("1.00"), payer_id=2, member_ids=[1, 2, 3], policy=EqualSplit())
    assert _pairs(shares) == [(1, Decimal("0.50")), (3, Decimal("0.50"))]


def test_sole_member_owes_nothing():
    assert allocate(Decimal("42.00"), payer_id=1, member_ids=[1], policy=EqualSplit()) == []


def test_remainder_follows_given_order():
    """Reordering participants moves the extra cents, nothing else."""
    forward = equal_split(Decimal("0.05"), [1, 2, 3])
    backward = equal_split(Decimal("0.05"), [3, 2, 1])

    assert _pairs(forward) == [(1, Decimal("0.02")), (2, Decimal("0.02")), (3, Decimal("0.01"))]
    assert _pairs(backward) == [(3, Decimal("0.02")), (2, Decimal("0.02")), (1, Decimal("0.01"))]


def test_zero_total_gives_zero_shares():
    shares = equal_split(Decimal("0.00"), [1, 2])
    assert [s.amount for s in shares] == [Decimal("0.00"), Decimal("0.00")]


@pytest.mark.parametrize("total", ["0.01", "0.99", "1.00", "33.33", "100.00", "999999.99"])
@pytest.mark.parametrize("n", [1, 2, 3, 7, 11])
def test_equal_split_sums_exactly(total, n):
    amount = Decimal(total)
    shares = equal_split(amount, list(range(1, n + 1)))

    assert sum(s.amount for s in shares) == amount
    assert all(s.amount >= 0 for s in shares)
    # at most one cent between the largest and smallest share
    assert max(s.amount for s in shares) - min(s.amount for s in shares) <= Decimal("0.01")


def test_equal_split_is_deterministic():
    ids = [5, 3, 8, 1]
    assert equal_split(Decimal("10.03"), ids) == equal_split(Decimal("10.03"), ids)


def test_empty_participant_list():
    assert equal_split(Decimal("10.00"), []) == []


# ── Other policies ─────────────────────────────────────────────────────────

def test_pooled_money_creates_no_obligations():
    assert allocate(Decimal("80.00"), 1, [1, 2, 3], PooledMoney()) == []


def test_charge_primary_holder_whole_amount():
    shares = allocate(Decimal("80.00"), 1, [1, 2, 3], ChargePrimaryHolder(3))
    assert _pairs(shares) == [(3, Decimal("80.00"))]


def test_allocate_rejects_negative_total():
    with pytest.raises(AppError) as exc_info:
        allocate(Decimal("-1.00"), 1, [1, 2], EqualSplit())
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT
    assert exc_info.value.http_status == 400


# ── select_policy ──────────────────────────────────────────────────────────

class TestSelectPolicy:

    def test_explicit_wins(self):
        shares = [ObligationShare(2, Decimal("1.00"))]
        policy = select_policy(1, primary_holder_id=2, personal_money=False, explicit=shares)
        assert policy == Explicit(tuple(shares))

    def test_no_holder_defaults_to_equal_split(self):
        assert select_policy(1, primary_holder_id=None) == EqualSplit()

    def test_holder_paying_defaults_to_pooled(self):
        assert select_policy(2, primary_holder_id=2) == PooledMoney()

    def test_other_payer_defaults_to_charging_holder(self):
        assert select_policy(1, primary_holder_id=2) == ChargePrimaryHolder(2)

    def test_holder_paying_personally_splits(self):
        assert select_policy(2, primary_holder_id=2, personal_money=True) == EqualSplit()

    def test_pooled_money_flag(self):
        assert select_policy(1, primary_holder_id=None, personal_money=False) == PooledMoney()


# ── validate_total ─────────────────────────────────────────────────────────

class TestValidateTotal:

    def test_quantizes_to_cents(self):
        assert validate_total("12.5") == Decimal("12.50")

    @pytest.mark.parametrize("raw", ["abc", "NaN", "Infinity", True, None])
    def test_non_numbers(self, raw):
        with pytest.raises(AppError) as exc_info:
            validate_total(raw)
        assert exc_info.value.code == ErrorCode.INVALID_AMOUNT

    def test_precision(self):
        with pytest.raises(AppError) as exc_info:
            validate_total(Decimal("1.001"))
        assert exc_info.value.code == ErrorCode.INVALID_AMOUNT_PRECISION

    def test_upper_bound(self):
        assert validate_total("9999999999.99") == MAX_AMOUNT
        with pytest.raises(AppError) as exc_info:
            validate_total("10000000000.00")
        assert exc_info.value.code == ErrorCode.INVALID_AMOUNT
        assert exc_info.value.http_status == 400


# ── validate_explicit ──────────────────────────────────────────────────────

class TestValidateExplicit:

    MEMBERS = [1, 2, 3]

    def _codes(self, shares, total="10.00"):
        with pytest.raises(AppError) as exc_info:
            validate_explicit(shares, Decimal(total), self.MEMBERS)
        return exc_info.value.code, exc_info.value.http_status

    def test_valid_shares_pass_through(self):
        shares = [ObligationShare(2, Decimal("4.00"), "wine"), ObligationShare(3, Decimal("6.00"))]
        assert validate_explicit(shares, Decimal("10.00"), self.MEMBERS) == shares

    def test_sum_may_be_below_total(self):
        result = validate_explicit([ObligationShare(2, Decimal("1.00"))], Decimal("10.00"), self.MEMBERS)
        assert _pairs(result) == [(2, Decimal("1.00"))]

    def test_sum_above_total(self):
        shares = [ObligationShare(2, Decimal("5.00")), ObligationShare(3, Decimal("5.01"))]
        assert self._codes(shares) == (ErrorCode.OBLIGATIONS_EXCEED_AMOUNT, 400)

    def test_duplicate_user(self):
        shares = [ObligationShare(2, Decimal("1.00")), ObligationShare(2, Decimal("1.00"))]
        assert self._codes(shares) == (ErrorCode.DUPLICATE_OBLIGATION_USER, 400)

    def test_non_member(self):
        assert self._codes([ObligationShare(99, Decimal("1.00"))]) == (
            ErrorCode.OBLIGATION_USER_NOT_MEMBER, 422,
        )

    @pytest.mark.parametrize("amount", [Decimal("-0.01"), Decimal("0.001"), Decimal("NaN"), Decimal("1E+15")])
    def test_bad_amount(self, amount):
        assert self._codes([ObligationShare(2, amount)]) == (ErrorCode.INVALID_OBLIGATION, 400)
