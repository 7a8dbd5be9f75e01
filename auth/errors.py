"""
auth/errors.py -- Typed failures raised by the access-control layer.

Every class carries an HTTP status_code, a stable machine-readable code and a
message that is safe to show to the caller. api/main.py renders any AuthError
into the standard {"error": {"code", "message"}} envelope; nothing in auth/
depends on FastAPI to do so.

InternalFailure is the only kind whose underlying cause must never reach the
client. Raise it with `from exc` so the traceback is kept for the log.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for access-control failures mapped to HTTP responses."""

    status_code: int = 401
    code: str = "unauthenticated"
    default_message: str = "Authentication required."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Middleware-chain taxonomy
# ---------------------------------------------------------------------------


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required. Please provide a valid token"


class TokenExpired(AuthError):
    status_code = 401
    code = "token_expired"
    default_message = "Token has expired. Please login again"


class TokenInvalid(AuthError):
    status_code = 401
    code = "token_invalid"
    default_message = "Invalid token. Please login again"


class AccountGone(AuthError):
    status_code = 401
    code = "account_gone"
    default_message = "User no longer exists. Please login again"


class AccountNotActive(AuthError):
    status_code = 403
    code = "account_not_active"
    default_message = "Account is not active. Please contact administrator"

    def __init__(self, status: str | None = None) -> None:
        self.status = status
        super().__init__(f"Account is {status}. Please contact administrator" if status else None)


class AccountLocked(AuthError):
    status_code = 403
    code = "account_locked"
    default_message = "Account is locked."

    def __init__(self, remaining_minutes: int) -> None:
        self.remaining_minutes = remaining_minutes
        super().__init__(f"Account is locked. Try again in {remaining_minutes} minutes")


class SessionInvalid(AuthError):
    status_code = 401
    code = "session_invalid"
    default_message = "Session is no longer valid. Please login again"


class InsufficientRole(AuthError):
    status_code = 403
    code = "insufficient_role"
    default_message = "Insufficient permissions to access this resource"


class AccessDenied(AuthError):
    status_code = 403
    code = "access_denied"
    default_message = "Access denied."


class InternalFailure(AuthError):
    status_code = 500
    code = "internal_error"
    default_message = "Authentication failed"


# ---------------------------------------------------------------------------
# Account-flow errors
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    status_code = 401
    code = "bad_credentials"
    default_message = "Invalid credentials"


class AccountNotVerified(AuthError):
    status_code = 403
    code = "account_not_verified"
    default_message = "Account is not verified. Please verify your email first"


class BadRequest(AuthError):
    status_code = 400
    code = "bad_request"
    default_message = "Bad request."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."
