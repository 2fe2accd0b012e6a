"""Error taxonomy for the access layer.

Every error carries the HTTP status it maps to and a public message. The API
turns any `AccessError` into a JSON body of the form
`{"message": ..., **error.extra()}`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AccessError(Exception):
    status_code: int = 500
    message: str = "Internal error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def extra(self) -> Dict[str, Any]:
        return {}

    def headers(self) -> Dict[str, str]:
        return {}


class InvalidCredentials(AccessError):
    status_code = 401
    message = "Invalid credentials"


class Unauthenticated(AccessError):
    status_code = 401
    message = "Authentication required"

    def __init__(self, message: Optional[str] = None, *, reason: str = "missing_credentials"):
        super().__init__(message)
        # Internal only; logged, never sent to the client.
        self.reason = reason


class InvalidToken(Unauthenticated):
    """Bad signature, malformed structure or expiry. Not distinguished to the caller."""

    message = "Invalid token"

    def __init__(self, reason: str = "token_invalid"):
        super().__init__(reason=reason)


class BadRequest(AccessError):
    status_code = 400
    message = "Bad request"


class NotFound(AccessError):
    status_code = 404
    message = "Not found"


class Forbidden(AccessError):
    status_code = 403
    message = "Insufficient permissions"

    def __init__(self, *, required: Any, current: Any, message: Optional[str] = None):
        super().__init__(message)
        self.required = required
        self.current = current

    def extra(self) -> Dict[str, Any]:
        return {"required": self.required, "current": self.current}


class DuplicateRegistration(AccessError):
    status_code = 400
    message = "Username already exists"


class RateLimited(AccessError):
    status_code = 429
    message = "Too many requests"

    def __init__(self, retry_after: int):
        super().__init__()
        self.retry_after = int(retry_after)

    def extra(self) -> Dict[str, Any]:
        return {"retryAfter": self.retry_after}

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}
