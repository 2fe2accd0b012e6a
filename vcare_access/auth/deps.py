from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from vcare_access.errors import RateLimited
from vcare_access.models import Identity

from .gate import ADMIN_ROLES, CUSTOMER_ROLES, STAFF_ROLES, require_min_share_balance, require_role


_bearer = HTTPBearer(auto_error=False)


def _state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=500, detail="server_config_missing")
    return value


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Identity:
    """Authenticate a request via the session cookie, then the bearer token.

    The resolved identity is also attached to `request.state.identity`.
    """
    cfg = _state(request, "cfg")
    resolver = _state(request, "resolver")

    authorization = None
    if credentials is not None and credentials.credentials:
        authorization = f"{credentials.scheme} {credentials.credentials}"

    identity = resolver.resolve(
        session_id=request.cookies.get(cfg.AUTH_SESSION_COOKIE_NAME),
        authorization=authorization,
    )
    request.state.identity = identity
    return identity


def require_roles(*allowed: str) -> Callable[..., Identity]:
    """Dependency factory: the caller must hold at least one of `allowed`."""
    roles = tuple(allowed)

    def _dep(user: Identity = Depends(get_current_user)) -> Identity:
        return require_role(user, roles)

    return _dep


require_admin = require_roles(*ADMIN_ROLES)
require_staff = require_roles(*STAFF_ROLES)
require_customer = require_roles(*CUSTOMER_ROLES)


def require_min_shares(threshold: Any) -> Callable[..., Identity]:
    def _dep(user: Identity = Depends(get_current_user)) -> Identity:
        return require_min_share_balance(user, threshold)

    return _dep


def login_rate_limit(request: Request) -> None:
    limiter = _state(request, "rate_limiter")
    key = client_address(request)
    if not limiter.allow(key):
        raise RateLimited(limiter.retry_after(key))
