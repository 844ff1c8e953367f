"""
services/allocation.py — Who owes what for one expense.

Pure functions only: no session, no Flask, no clock. Given an amount, the
payer, the household's members (in join order) and a policy, produce the
obligations. The same inputs always produce the same output.

Policies (chosen by select_policy, in this order):
  0. Explicit(shares)          — caller supplied obligations; validated, used as-is
  1. PooledMoney               — paid from shared money; nobody owes anything
  2. ChargePrimaryHolder(id)   — personal money, payer is not the primary
                                 holder; the holder owes the whole amount
  3. EqualSplit                — everyone except the payer shares the amount

Equal split (exact cents):
    base            = floor(total / n, 2 dp)
    remainder_cents = (total - base * n) * 100
    The first `remainder_cents` members (join order) get base + 0.01.
  10.00 among 3 → 3.34, 3.33, 3.33. Sum always equals total.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Iterable, Sequence, Union

from household_ledger.app.errors import (
    AppError,
    BusinessRuleError,
    ErrorCode,
    ValidationFailed,
)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Largest value a Numeric(12, 2) money column holds.
MAX_AMOUNT = Decimal("9999999999.99")


@dataclass(frozen=True)
class ObligationShare:
    user_id: int
    amount: Decimal
    note: str | None = None


# ── Policy variants ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PooledMoney:
    pass


@dataclass(frozen=True)
class ChargePrimaryHolder:
    holder_id: int


@dataclass(frozen=True)
class EqualSplit:
    pass


@dataclass(frozen=True)
class Explicit:
    shares: tuple[ObligationShare, ...]


AllocationPolicy = Union[PooledMoney, ChargePrimaryHolder, EqualSplit, Explicit]


# ── Validation ─────────────────────────────────────────────────────────────

def _has_cent_precision(value: Decimal) -> bool:
    return value == value.quantize(CENT)


def validate_total(total, field: str = "amount") -> Decimal:
    """
    Coerces `total` to a Decimal and checks it is a usable expense amount.

    Raises:
        ValidationFailed(INVALID_AMOUNT)           — non-numeric, non-finite or negative,
                                                     or above MAX_AMOUNT
        ValidationFailed(INVALID_AMOUNT_PRECISION) — more than 2 decimal places
    """
    if isinstance(total, bool):
        raise ValidationFailed(ErrorCode.INVALID_AMOUNT, "Amount must be a number.", field=field)
    try:
        value = total if isinstance(total, Decimal) else Decimal(str(total))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(ErrorCode.INVALID_AMOUNT, "Amount must be a number.", field=field)

    if not value.is_finite():
        raise ValidationFailed(ErrorCode.INVALID_AMOUNT, "Amount must be a finite number.", field=field)
    if value < 0:
        raise ValidationFailed(ErrorCode.INVALID_AMOUNT, "Amount must not be negative.", field=field)
    if value > MAX_AMOUNT:
        raise ValidationFailed(
            ErrorCode.INVALID_AMOUNT,
            f"Amount must not exceed {MAX_AMOUNT}.",
            field=field,
        )
    if not _has_cent_precision(value):
        raise ValidationFailed(
            ErrorCode.INVALID_AMOUNT_PRECISION,
            "Amount must have at most 2 decimal places.",
            field=field,
        )
    return value.quantize(CENT)


def validate_explicit(
        shares: Iterable[ObligationShare],
        total: Decimal,
        member_ids: Sequence[int],
) -> list[ObligationShare]:
    """
    Checks caller-supplied obligations against the expense amount.

    Raises:
        ValidationFailed(INVALID_OBLIGATION)           — bad amount (negative, > 2 dp)
        ValidationFailed(DUPLICATE_OBLIGATION_USER)    — same user listed twice
        BusinessRuleError(OBLIGATION_USER_NOT_MEMBER)  — user not in the household
        ValidationFailed(OBLIGATIONS_EXCEED_AMOUNT)    — sum(shares) > total
    """
    members = set(member_ids)
    seen: set[int] = set()
    result: list[ObligationShare] = []

    for share in shares:
        amount = share.amount
        if (
            not isinstance(amount, Decimal)
            or not amount.is_finite()
            or amount < 0
            or amount > MAX_AMOUNT
            or not _has_cent_precision(amount)
        ):
            raise ValidationFailed(
                ErrorCode.INVALID_OBLIGATION,
                f"Obligation amount for user {share.user_id} must be a non-negative "
                f"amount with at most 2 decimal places.",
                field="obligations",
            )
        if share.user_id in seen:
            raise ValidationFailed(
                ErrorCode.DUPLICATE_OBLIGATION_USER,
                f"User {share.user_id} appears more than once in obligations.",
                field="obligations",
            )
        if share.user_id not in members:
            raise BusinessRuleError(
                ErrorCode.OBLIGATION_USER_NOT_MEMBER,
                f"User {share.user_id} is not a member of this household.",
                field="obligations",
            )
        seen.add(share.user_id)
        result.append(ObligationShare(share.user_id, amount.quantize(CENT), share.note))

    owed = sum((s.amount for s in result), ZERO)
    if owed > total:
        raise ValidationFailed(
            ErrorCode.OBLIGATIONS_EXCEED_AMOUNT,
            f"Obligations ({owed}) exceed the expense amount ({total}).",
            field="obligations",
        )
    return result


# ── Policy selection and allocation ────────────────────────────────────────

def select_policy(
        payer_id: int,
        primary_holder_id: int | None,
        personal_money: bool | None = None,
        explicit: Iterable[ObligationShare] | None = None,
) -> AllocationPolicy:
    """
    Picks the allocation policy for one expense.

    `personal_money=None` means the caller did not say. Then the payer is
    assumed to have used personal money unless they are the primary holder.
    """
    if explicit is not None:
        return Explicit(tuple(explicit))

    if personal_money is None:
        personal_money = primary_holder_id is None or payer_id != primary_holder_id

    if not personal_money:
        return PooledMoney()

    if primary_holder_id is not None and primary_holder_id != payer_id:
        return ChargePrimaryHolder(primary_holder_id)

    return EqualSplit()


def equal_split(total: Decimal, participant_ids: Sequence[int]) -> list[ObligationShare]:
    """
    Splits `total` over participant_ids to the cent.

    The first (total - base * n) / 0.01 participants receive one extra cent,
    so the order of participant_ids decides who absorbs the remainder.
    """
    n = len(participant_ids)
    if n == 0:
        return []

    base = (total / Decimal(n)).quantize(CENT, rounding=ROUND_DOWN)
    remainder_cents = int(((total - base * n) / CENT).to_integral_value())

    shares = [
        ObligationShare(uid, base + CENT if index < remainder_cents else base)
        for index, uid in enumerate(participant_ids)
    ]

    computed = sum((s.amount for s in shares), ZERO)
    if computed != total:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Equal split produced sum {computed} for amount {total}. This is a bug.",
            500,
        )
    return shares


def allocate(
        total,
        payer_id: int,
        member_ids: Sequence[int],
        policy: AllocationPolicy,
) -> list[ObligationShare]:
    """
    Computes the obligations for one expense.

    Args:
        total:      Expense amount. Validated here (INVALID_AMOUNT, 400).
        payer_id:   Who paid. Never owes anything under EqualSplit.
        member_ids: All household members in join order.
        policy:     One of the policy variants above.

    Returns:
        Obligations in allocation order. May be empty.
    """
    amount = validate_total(total)

    if isinstance(policy, Explicit):
        return validate_explicit(policy.shares, amount, member_ids)
    if isinstance(policy, PooledMoney):
        return []
    if isinstance(policy, ChargePrimaryHolder):
        return [ObligationShare(policy.holder_id, amount)]
    if isinstance(policy, EqualSplit):
        others = [uid for uid in member_ids if uid != payer_id]
        return equal_split(amount, others)

    raise TypeError(f"Unknown allocation policy: {policy!r}")
