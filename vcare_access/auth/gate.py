"""Role / balance gates.

Gates take an already-resolved identity. Passing `None` (no resolver ran, or it
failed) is an authentication problem, reported as `Unauthenticated`.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional, Tuple

from vcare_access.economics.shares import to_decimal
from vcare_access.errors import Forbidden, Unauthenticated
from vcare_access.models import Identity


# Named gates. Each wider set contains the narrower one.
ADMIN_ROLES: Tuple[str, ...] = ("admin",)
STAFF_ROLES: Tuple[str, ...] = ("admin", "staff", "accountant")
CUSTOMER_ROLES: Tuple[str, ...] = ("admin", "staff", "accountant", "customer", "shareholder")


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    required: Any
    current: Any
    message: str = ""

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise Forbidden(required=self.required, current=self.current, message=self.message or None)


def _required_list(allowed: Iterable[str] | str) -> list[str]:
    if isinstance(allowed, str):
        return [allowed]
    return list(dict.fromkeys(str(r) for r in allowed))


def check_roles(identity: Optional[Identity], allowed: Iterable[str] | str) -> GateDecision:
    if identity is None:
        raise Unauthenticated(reason="gate_without_identity")
    required = _required_list(allowed)
    current = list(identity.effective_roles)
    ok = any(r in required for r in current)
    return GateDecision(allowed=ok, required=required, current=current, message="Insufficient permissions")


def require_role(identity: Optional[Identity], allowed: Iterable[str] | str) -> Identity:
    """Return the identity if it holds at least one allowed role, else raise Forbidden."""
    check_roles(identity, allowed).raise_for_denial()
    assert identity is not None
    return identity


def check_min_share_balance(identity: Optional[Identity], threshold: Any) -> GateDecision:
    if identity is None:
        raise Unauthenticated(reason="gate_without_identity")
    need = to_decimal(threshold)
    have = to_decimal(identity.share_balance, default=Decimal(0))
    return GateDecision(
        allowed=have >= need,
        required=need,
        current=have,
        message="Insufficient digital share balance",
    )


def require_min_share_balance(identity: Optional[Identity], threshold: Any) -> Identity:
    check_min_share_balance(identity, threshold).raise_for_denial()
    assert identity is not None
    return identity
