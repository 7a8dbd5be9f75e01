"""
auth/tokens.py -- Signed, time-boxed access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets (Settings.secret_key / Settings.refresh_secret_key)
       and carry a "kind" claim, so a refresh token is rejected where an
       access token is expected even if the secrets were misconfigured.

  Claims: sub (account id as a string -- python-jose rejects non-string
       subjects), kind, iat, exp, and jti. jti is random so two tokens issued
       for the same account in the same second are still distinct values in
       the session list.

  Verification raises instead of returning None: the middleware chain needs
       to tell TokenExpired apart from TokenInvalid so the client gets the
       right guidance ("login again" vs "your token is garbage").

Tokens are stateless. Server-side revocation happens through the session list
(auth/sessions.py), which the middleware chain cross-checks on every request
for access tokens and auth.service checks by jti before honouring a refresh
token.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from core.config import get_settings

_settings = get_settings()

_ALGORITHM = "HS256"


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """The verified contents of a token."""

    account_id: int
    kind: TokenKind
    expires_at: datetime
    jti: str


def _secret_for(kind: TokenKind) -> str:
    if kind is TokenKind.refresh:
        return _settings.refresh_secret_key
    return _settings.secret_key


def _default_ttl(kind: TokenKind) -> int:
    if kind is TokenKind.refresh:
        return _settings.refresh_token_expire_seconds
    return _settings.access_token_expire_seconds


def issue_token(
    account_id: int,
    kind: TokenKind = TokenKind.access,
    expire_seconds: int = 0,
    now: datetime | None = None,
    jti: str | None = None,
) -> str:
    """Encode a signed JWT for account_id.

    Args:
        account_id:     Primary key of the account; becomes the sub claim.
        kind:           access (short TTL) or refresh (long TTL).
        expire_seconds: Token lifetime. If 0 (default), uses the configured
                        TTL for the kind. The login flow passes
                        remember_me_expire_seconds here when asked to.
        now:            Issue time. Defaults to the current UTC time.
        jti:            Token id. Random when omitted; the login flow passes
                        its own for refresh tokens so it can record them.
    """
    issued = now or datetime.now(timezone.utc)
    duration = expire_seconds if expire_seconds > 0 else _default_ttl(kind)
    payload = {
        "sub": str(account_id),
        "kind": kind.value,
        "iat": issued,
        "exp": issued + timedelta(seconds=duration),
        "jti": jti or secrets.token_hex(8),
    }
    return jwt.encode(payload, _secret_for(kind), algorithm=_ALGORITHM)


def verify_token(token: str, kind: TokenKind = TokenKind.access) -> TokenClaims:
    """Verify signature, expiry and shape of a token.

    Raises:
        TokenExpired: the exp claim has passed (signature was valid).
        TokenInvalid: bad signature, wrong kind, or missing / garbled claims.
    """
    try:
        payload = jwt.decode(token, _secret_for(kind), algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenInvalid() from exc

    if payload.get("kind") != kind.value:
        raise TokenInvalid()
    try:
        account_id = int(payload["sub"])
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc
    return TokenClaims(
        account_id=account_id,
        kind=kind,
        expires_at=expires_at,
        jti=str(payload.get("jti", "")),
    )
