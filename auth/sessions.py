"""
auth/sessions.py -- Bounded per-account session list.

The list lives inside Account.security and is persisted with the account
document; these helpers only mutate it in place; the caller saves.

Eviction is FIFO by insertion order: once the list is over capacity the
oldest entries are dropped, so the most recent N logins stay valid. Using a
session does not move it to the back of the list.

Refresh tokens are tracked by jti in a second list with the same cap.
clear_sessions() empties both, so "log out everywhere" and a password reset
also stop old refresh tokens from minting new sessions.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.models import SecurityState, SessionToken
from core.config import get_settings

_settings = get_settings()


def add_session(
    security: SecurityState,
    token: str,
    device: str | None = None,
    ip: str | None = None,
    now: datetime | None = None,
) -> SessionToken:
    """Append a session for token and trim the list back to capacity."""
    created = now or datetime.now(timezone.utc)
    session = SessionToken(
        token=token,
        created_at=created,
        expires_at=created + timedelta(seconds=_settings.session_ttl_seconds),
        device=device,
        ip=ip,
    )
    security.session_tokens.append(session)
    overflow = len(security.session_tokens) - _settings.session_capacity
    if overflow > 0:
        del security.session_tokens[:overflow]
    return session


def remove_session(security: SecurityState, token: str) -> None:
    """Drop the session whose value is exactly token. Unknown tokens are ignored."""
    security.session_tokens = [s for s in security.session_tokens if s.token != token]


def clear_sessions(security: SecurityState) -> None:
    """Revoke every session and every outstanding refresh token."""
    security.session_tokens = []
    security.refresh_token_ids = []


def has_session(security: SecurityState, token: str, now: datetime | None = None) -> bool:
    """Return True if token is a live (present and unexpired) session."""
    current = now or datetime.now(timezone.utc)
    return any(s.token == token and s.expires_at > current for s in security.session_tokens)


def add_refresh_token(security: SecurityState, jti: str) -> None:
    """Record a newly issued refresh token; the oldest ids drop off past capacity."""
    security.refresh_token_ids.append(jti)
    overflow = len(security.refresh_token_ids) - _settings.session_capacity
    if overflow > 0:
        del security.refresh_token_ids[:overflow]


def has_refresh_token(security: SecurityState, jti: str) -> bool:
    return bool(jti) and jti in security.refresh_token_ids
