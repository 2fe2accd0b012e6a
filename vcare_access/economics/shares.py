"""Digital-share economics.

Pure functions translating between currency amounts and digital-share units.

Exchange rate (fixed):
  - 100 shares per 1,000,000 currency units invested (before role multiplier)
  - 1 share = 10,000 currency units

Arithmetic is done in `Decimal` so amount -> shares -> amount is exact. Rounding,
where a whole number is required, is half away from zero on the final product.
"""

from __future__ import annotations

import decimal
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional, Union

from .tables import UNLIMITED, MaxoutFactor, RoleTable, default_role_table

Number = Union[int, float, Decimal, str]

AMOUNT_PER_SHARE_BLOCK = Decimal(1_000_000)
SHARES_PER_BLOCK = Decimal(100)
CURRENCY_PER_SHARE = Decimal(10_000)

# Both directions must stay inverse to each other.
if AMOUNT_PER_SHARE_BLOCK / SHARES_PER_BLOCK != CURRENCY_PER_SHARE:
    raise RuntimeError("share exchange constants are not mutual inverses")

REFERRAL_BONUS_PER_REFERRAL = 10
REFERRAL_BONUS_CAP = 100

# (minimum cumulative investment, bonus shares), highest first.
VIP_TIERS = (
    (Decimal(100_000_000), 500),
    (Decimal(50_000_000), 300),
    (Decimal(20_000_000), 200),
    (Decimal(10_000_000), 100),
)

WITHDRAWAL_FEE_RATE = Decimal("0.001")


def to_decimal(value: Optional[Number], *, default: Optional[Decimal] = None) -> Decimal:
    """Coerce an amount/balance to Decimal.

    Floats go through `str()` so 0.1 becomes Decimal('0.1') rather than its binary expansion.
    When `default` is given, missing or non-numeric input returns it instead of raising.
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            if value is None or isinstance(value, bool):
                raise InvalidOperation
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            if default is not None:
                return default
            raise ValueError(f"not a number: {value!r}") from None
    if not result.is_finite():
        if default is not None:
            return default
        raise ValueError(f"not a finite number: {value!r}")
    return result


def _exact_context(value: Decimal) -> decimal.Context:
    # Dividing or multiplying by a power of ten is exact when precision covers every digit.
    ctx = decimal.getcontext().copy()
    t = value.as_tuple()
    ctx.prec = max(ctx.prec, len(t.digits) + max(t.exponent, 0) + 6)
    return ctx


def round_half_away(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP, context=_exact_context(value)))


def amount_to_shares(amount: Number) -> Decimal:
    value = to_decimal(amount)
    with decimal.localcontext(_exact_context(value)):
        return value / AMOUNT_PER_SHARE_BLOCK * SHARES_PER_BLOCK


def shares_to_amount(shares: Number) -> Decimal:
    value = to_decimal(shares)
    with decimal.localcontext(_exact_context(value)):
        return value * CURRENCY_PER_SHARE


def share_value(balance: Optional[Number]) -> Decimal:
    """Currency value of a share balance; missing/garbled balances count as 0."""
    return shares_to_amount(to_decimal(balance, default=Decimal(0)))


def _table(table: Optional[RoleTable]) -> RoleTable:
    return table if table is not None else default_role_table()


def multiplier(role_name: str, table: Optional[RoleTable] = None) -> float:
    return _table(table).multiplier(role_name)


def shares_from_role(role_name: str, amount: Number, table: Optional[RoleTable] = None) -> int:
    factor = Decimal(str(multiplier(role_name, table)))
    return round_half_away(amount_to_shares(amount) * factor)


def referral_bonus(referral_count: int) -> int:
    n = int(referral_count)
    if n < 0:
        raise ValueError("referral_count must be >= 0")
    return min(n * REFERRAL_BONUS_PER_REFERRAL, REFERRAL_BONUS_CAP)


def vip_bonus(total_investment: Number) -> int:
    total = to_decimal(total_investment)
    for threshold, bonus in VIP_TIERS:
        if total >= threshold:
            return bonus
    return 0


def maxout_limit(role_name: str, table: Optional[RoleTable] = None) -> MaxoutFactor:
    return _table(table).maxout(role_name)


def maxout_amount(investment_amount: Number, role_name: str, table: Optional[RoleTable] = None) -> Union[Decimal, str]:
    limit = maxout_limit(role_name, table)
    if limit == UNLIMITED:
        return UNLIMITED
    return to_decimal(investment_amount) * Decimal(str(limit))


def withdrawal_fee(amount: Number) -> int:
    return round_half_away(to_decimal(amount) * WITHDRAWAL_FEE_RATE)


def investment_quote(
    amount: Number,
    roles: Iterable[str] = (),
    *,
    referral_count: int = 0,
    table: Optional[RoleTable] = None,
) -> Dict[str, Any]:
    """Shares a registration would earn.

    Mirrors the signup flow: the plain investment conversion, plus a role-weighted
    award (and its maxout) for every role registered, plus VIP and referral bonuses.
    """
    t = _table(table)
    base = amount_to_shares(amount)

    role_rows = []
    role_total = 0
    for name in dict.fromkeys(str(r) for r in roles if r):
        spec = t.spec(name)
        earned = shares_from_role(name, amount, t)
        role_total += earned
        role_rows.append(
            {
                "role": name,
                "multiplier": spec.multiplier,
                "shares": earned,
                "maxoutLimit": spec.maxout,
                "maxoutAmount": maxout_amount(amount, name, t),
            }
        )

    vip = vip_bonus(amount)
    referral = referral_bonus(referral_count)
    return {
        "tableVersion": t.version,
        "amount": to_decimal(amount),
        "baseShares": base,
        "roles": role_rows,
        "roleShares": role_total,
        "vipBonus": vip,
        "referralBonus": referral,
        "totalShares": base + role_total + vip + referral,
    }
