"""
auth/passwords.py -- Password policy, hashing and verification (bcrypt).

Security design decisions:
  bcrypt directly rather than passlib[bcrypt]: passlib's internal wrap-bug
       detection creates a password longer than 72 bytes, which bcrypt 4.x
       rejects with an explicit error.

  72-byte limit: bcrypt only reads the first 72 bytes of its input, and
       bcrypt 5.x raises ValueError instead of truncating. Passwords are
       therefore capped at MAX_PASSWORD_BYTES of UTF-8, checked by the policy
       and again by hash_password(). Nothing is truncated silently.

  Cost factor: Settings.bcrypt_rounds (default 12). The salt and cost are
       embedded in the digest, so raising the cost later still verifies old
       hashes.

  verify_password() never raises. A malformed stored digest or an over-long
       candidate is treated the same as a wrong password so the caller can
       update the lockout counter uniformly.

  DUMMY_HASH lets the login flow run bcrypt even when the account does not
       exist, so response time does not reveal which emails are registered.

The policy is shared by the API request models and the operator CLI.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import re

import bcrypt

from auth.errors import BadRequest
from core.config import get_settings

_settings = get_settings()

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72

# pydantic-core's regex engine has no lookahead, so each class is its own rule.
_PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"\d"), "one number"),
    (re.compile(r"[@$!%*?&]"), "one special character (@$!%*?&)"),
)


def _too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def check_password_policy(plain: str) -> str:
    """Return plain unchanged if it satisfies the password policy.

    Raises:
        ValueError: with a message naming what is wrong. pydantic turns this
                    into a 422 when called from a field_validator.
    """
    if len(plain) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if _too_long(plain):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    missing = [label for rule, label in _PASSWORD_RULES if not rule.search(plain)]
    if missing:
        raise ValueError("Password must contain at least " + ", ".join(missing))
    return plain


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises:
        BadRequest: plain is longer than MAX_PASSWORD_BYTES once encoded.
    """
    if _too_long(plain):
        raise BadRequest(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not hashed or _too_long(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
DUMMY_HASH: str = hash_password("facilityops_timing_dummy")
