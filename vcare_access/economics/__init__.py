"""Digital-share economics: conversions, role multipliers, bonuses and maxout caps."""

from .shares import (
    amount_to_shares,
    investment_quote,
    maxout_amount,
    maxout_limit,
    referral_bonus,
    share_value,
    shares_from_role,
    shares_to_amount,
    vip_bonus,
    withdrawal_fee,
)
from .tables import UNLIMITED, RoleSpec, RoleTable, default_role_table, get_role_table

__all__ = [
    "UNLIMITED",
    "RoleSpec",
    "RoleTable",
    "amount_to_shares",
    "default_role_table",
    "get_role_table",
    "investment_quote",
    "maxout_amount",
    "maxout_limit",
    "referral_bonus",
    "share_value",
    "shares_from_role",
    "shares_to_amount",
    "vip_bonus",
    "withdrawal_fee",
]
