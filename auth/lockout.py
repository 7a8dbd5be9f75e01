"""
auth/lockout.py -- Consecutive-failure lockout for password logins.

There is no stored "locked" flag. The state is computed from the nullable
SecurityState.lockout_until timestamp by is_locked(), and every caller goes
through that function:

    Unlocked --(failure, counter reaches threshold)--> Locked
    Locked   --(lockout_until passes)---------------> Unlocked (computed)
    any      --(successful login)-------------------> Unlocked, counter = 0

The counter is not reset when a lockout expires. A failure after expiry pushes
it further past the threshold, which locks the account again straight away.

Threshold and duration come from Settings (defaults: 5 failures, 30 minutes).
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from auth.models import SecurityState
from core.config import get_settings

_settings = get_settings()


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def is_locked(security: SecurityState, now: datetime | None = None) -> bool:
    return security.lockout_until is not None and security.lockout_until > _now(now)


def remaining_lockout_minutes(security: SecurityState, now: datetime | None = None) -> int:
    """Whole minutes (rounded up) until the lockout ends; 0 when unlocked."""
    if not is_locked(security, now):
        return 0
    seconds = (security.lockout_until - _now(now)).total_seconds()
    return math.ceil(seconds / 60)


def record_failed_login(security: SecurityState, now: datetime | None = None) -> bool:
    """Count one failed attempt. Returns True if the account is now locked."""
    current = _now(now)
    security.failed_login_attempts += 1
    if security.failed_login_attempts >= _settings.lockout_threshold:
        security.lockout_until = current + timedelta(minutes=_settings.lockout_minutes)
    return is_locked(security, current)


def record_successful_login(security: SecurityState, ip: str | None = None, now: datetime | None = None) -> None:
    security.failed_login_attempts = 0
    security.lockout_until = None
    security.last_login_at = _now(now)
    if ip:
        security.last_login_ip = ip


def unlock(security: SecurityState) -> None:
    """Administrative reset; same effect on the counter as a successful login."""
    security.failed_login_attempts = 0
    security.lockout_until = None
