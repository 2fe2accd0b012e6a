from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import jwt
from passlib.context import CryptContext

from vcare_access.economics.shares import to_decimal
from vcare_access.errors import InvalidToken
from vcare_access.models import Identity, TokenClaims


# scrypt for new hashes; pbkdf2 rows are still accepted and flagged for rehash.
_pwd = CryptContext(schemes=["scrypt", "pbkdf2_sha256"], deprecated="auto", scrypt__rounds=14)
_JWT_ALG = "HS256"
_TOKEN_TTL = timedelta(hours=24)

# Rows imported from the previous platform: "<derived hex>.<salt hex>", scrypt N=16384 r=8 p=1, 64 bytes.
_LEGACY_SCRYPT = {"n": 16384, "r": 8, "p": 1, "dklen": 64}


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password_blank")
    return _pwd.hash(password)


def _verify_legacy(password: str, stored: str) -> bool:
    derived_hex, _, salt = stored.partition(".")
    if not derived_hex or not salt:
        return False
    try:
        expected = bytes.fromhex(derived_hex)
    except ValueError:
        return False
    supplied = hashlib.scrypt(password.encode("utf-8"), salt=salt.encode("utf-8"), **_LEGACY_SCRYPT)
    return hmac.compare_digest(expected, supplied)


def verify_password(password: str, password_hash: str) -> bool:
    """Check a secret against its stored form. Malformed input is a mismatch, never an error."""
    if not password or not password_hash:
        return False
    try:
        if password_hash.startswith("$"):
            return _pwd.verify(password, password_hash)
        return _verify_legacy(password, password_hash)
    except Exception:
        return False


def needs_rehash(password_hash: str) -> bool:
    if not password_hash or not password_hash.startswith("$"):
        return True
    try:
        return _pwd.needs_update(password_hash)
    except Exception:
        return True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Signs and verifies bearer tokens.

    A token carries a snapshot of identity, roles and share balance at issue time.
    Verification only checks signature and expiry; it never consults the store.
    """

    def __init__(
        self,
        secret: Optional[str],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not (secret or "").strip():
            raise ValueError("jwt_secret_blank")
        self._secret = str(secret)
        self._clock = clock

    def issue(self, identity: Identity) -> str:
        now = self._clock()
        exp = now + _TOKEN_TTL
        payload: Dict[str, Any] = {
            "sub": str(identity.id),
            "email": identity.email,
            "roles": list(identity.effective_roles),
            "share_balance": str(to_decimal(identity.share_balance, default=Decimal(0))),
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=_JWT_ALG)

    def verify(self, token: str) -> TokenClaims:
        """Decode a token or raise InvalidToken.

        The reason (expired / bad signature / malformed) is kept on the exception for
        logging only; callers respond identically to all three.
        """
        if not token:
            raise InvalidToken("token_malformed")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_JWT_ALG],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidToken("token_expired") from None
        except jwt.InvalidSignatureError:
            raise InvalidToken("token_bad_signature") from None
        except jwt.InvalidTokenError:
            raise InvalidToken("token_malformed") from None

        try:
            subject_id = int(payload["sub"])
            raw_roles = payload.get("roles") or ()
            if isinstance(raw_roles, str):
                raise ValueError("roles_not_a_list")
            roles = tuple(str(r) for r in raw_roles)
        except (TypeError, ValueError):
            raise InvalidToken("token_malformed") from None

        return TokenClaims(
            subject_id=subject_id,
            email=str(payload.get("email") or ""),
            roles=roles,
            share_balance=to_decimal(payload.get("share_balance"), default=Decimal(0)),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )

    def identity_from_claims(self, claims: TokenClaims) -> Identity:
        return Identity(
            id=claims.subject_id,
            email=claims.email,
            name="",
            status="active",
            role=claims.roles[0] if claims.roles else "",
            roles=claims.roles,
            share_balance=claims.share_balance,
            source="token",
        )
