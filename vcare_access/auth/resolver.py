from __future__ import annotations

import threading
from collections import Counter
from typing import Callable, Dict, Optional

from vcare_access.errors import InvalidToken, NotFound, Unauthenticated
from vcare_access.models import Identity

from .security import TokenIssuer
from .sessions import MemorySessionStore


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None


class AuthResolver:
    """Turns a request's session id / Authorization header into an Identity.

    Order:
      1. Live server-side session -> identity reloaded from the store.
      2. Bearer token -> identity rebuilt from the token's own claims (no store lookup,
         so role/balance changes show up only after the token is reissued).
      3. Otherwise Unauthenticated.

    Every rejection is logged and counted with its concrete reason even though the
    client always sees the same 401.
    """

    def __init__(
        self,
        *,
        sessions: MemorySessionStore,
        issuer: TokenIssuer,
        load_identity: Callable[[int], Identity],
    ):
        self.sessions = sessions
        self.issuer = issuer
        self._load_identity = load_identity
        self._lock = threading.Lock()
        self._rejections: Counter[str] = Counter()

    def resolve(self, *, session_id: Optional[str] = None, authorization: Optional[str] = None) -> Identity:
        stale_session = False
        user_id = self.sessions.get(session_id)
        if user_id is not None:
            try:
                identity = self._load_identity(user_id)
            except NotFound:
                # User deleted after login; drop the session and fall through.
                self.sessions.invalidate(session_id)
                stale_session = True
            else:
                if identity.status != "active":
                    self.sessions.invalidate(session_id)
                    raise self._reject(Unauthenticated(reason="user_inactive"))
                return identity

        token = bearer_token(authorization)
        if token:
            try:
                claims = self.issuer.verify(token)
            except InvalidToken as e:
                raise self._reject(e)
            return self.issuer.identity_from_claims(claims)

        reason = "session_user_not_found" if stale_session else "missing_credentials"
        raise self._reject(Unauthenticated(reason=reason))

    def _reject(self, err: Unauthenticated) -> Unauthenticated:
        with self._lock:
            self._rejections[err.reason] += 1
        _debug(f"rejected credentials reason={err.reason}")
        return err

    def rejection_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._rejections)
