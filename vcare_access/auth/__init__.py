"""Authentication / authorization.

Two ways to authenticate a request:

- A server-side session (cookie set by `/login` and `/register`), which always
  reloads the identity, roles and share balance from the store.
- `Authorization: Bearer <token>` (issued by every login endpoint), which trusts the
  token's own claims until it expires.

Route handlers then consult the role / balance gates.
"""

from .deps import (
    get_current_user,
    require_admin,
    require_customer,
    require_min_shares,
    require_roles,
    require_staff,
)
from .crud import bootstrap_admin_if_needed, create_user

__all__ = [
    "get_current_user",
    "require_admin",
    "require_customer",
    "require_min_shares",
    "require_roles",
    "require_staff",
    "bootstrap_admin_if_needed",
    "create_user",
]
