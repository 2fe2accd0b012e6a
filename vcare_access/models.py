from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Tuple


@dataclass(frozen=True)
class Identity:
    """Read-only snapshot of a user, attached to the request once resolved."""

    id: int
    email: str
    name: str
    status: str
    role: str
    roles: Tuple[str, ...] = field(default_factory=tuple)
    share_balance: Decimal = Decimal("0")
    # "session" or "token"; which credential produced this snapshot.
    source: str = "session"

    @property
    def effective_roles(self) -> Tuple[str, ...]:
        if self.roles:
            return self.roles
        return (self.role,) if self.role else ()


@dataclass(frozen=True)
class TokenClaims:
    subject_id: int
    email: str
    roles: Tuple[str, ...]
    share_balance: Decimal
    issued_at: int
    expires_at: int
