"""
auth/service.py -- Account flows: login, token refresh, logout, password
management, verification, and administrative account changes.

Every function takes the AccountStore explicitly, loads or receives an
Account, mutates it through the policy modules and writes the whole document
back with store.save_account():

  auth/passwords.py   -- hash / verify
  auth/tokens.py      -- issue access + refresh tokens
  auth/sessions.py    -- bounded session list
  auth/lockout.py     -- failure counter and lockout window
  auth/permissions.py -- role defaults merged under explicit grants

Failures are raised as auth.errors classes; api/main.py renders them.

Timing: authenticate() always runs bcrypt, against DUMMY_HASH when the
account does not exist, so response time does not reveal registered emails.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountGone,
    AccountLocked,
    AccountNotActive,
    AccountNotVerified,
    BadRequest,
    Conflict,
    InvalidCredentials,
    SessionInvalid,
)
from auth.lockout import (
    is_locked,
    record_failed_login,
    record_successful_login,
    remaining_lockout_minutes,
    unlock,
)
from auth.models import Account, AccountStatus, PermissionSet, Role, VerificationStatus
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.permissions import CAPABILITIES, canonical_capability, resolve_permissions
from auth.sessions import add_refresh_token, add_session, clear_sessions, has_refresh_token, remove_session
from auth.store import AccountStore
from auth.tokens import TokenKind, issue_token, verify_token
from core.config import get_settings

logger = logging.getLogger("facilityops.auth")

_settings = get_settings()


@dataclass
class LoginResult:
    account: Account
    access_token: str
    refresh_token: str
    expires_in: int  # access-token lifetime in seconds


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def set_password(account: Account, plain: str) -> None:
    """Hash and store a new password. The only place hash_password() is called for accounts."""
    account.hashed_password = hash_password(plain)
    account.security.last_password_change = _now()


# ---------------------------------------------------------------------------
# Account creation
# ---------------------------------------------------------------------------


def create_account(
    store: AccountStore,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: Role = Role.user,
    status: AccountStatus = AccountStatus.pending,
    verification_status: VerificationStatus = VerificationStatus.pending,
    username: str | None = None,
    phone: str | None = None,
    managed_facilities: list[str] | None = None,
    created_by: int | None = None,
) -> Account:
    """Create an account with hashed password and role-derived permissions.

    Raises Conflict if the email (case-insensitive) or username is taken,
    including by a soft-deleted account.
    """
    email = email.strip().lower()
    if store.get_by_email(email, include_deleted=True) is not None:
        raise Conflict("A user with that email already exists.")
    if username and store.get_by_username(username, include_deleted=True) is not None:
        raise Conflict("A user with that username already exists.")

    role = Role(role)
    account = Account(
        email=email,
        username=username or None,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role=role,
        status=AccountStatus(status),
        verification_status=VerificationStatus(verification_status),
        managed_facilities=list(dict.fromkeys(managed_facilities or [])),
        created_by=created_by,
    )
    set_password(account, password)
    account.permissions = resolve_permissions(role, account.permission_grants)
    try:
        store.create_account(account)
    except IntegrityError as exc:
        # A concurrent request created the same email / username between the
        # lookup above and the insert.
        raise Conflict("A user with that email or username already exists.") from exc
    logger.info("Account created: id=%s role=%s", account.id, role.value)
    return account


def create_super_admin(store: AccountStore, email: str, password: str, first_name: str, last_name: str) -> Account:
    """Bootstrap the first super admin. Refuses when a live one already exists."""
    if store.count_active_super_admins() > 0:
        raise Conflict("Super admin already exists")
    return create_account(
        store,
        email=email,
        password=password,
        first_name=first_name,
        last_name=last_name,
        role=Role.super_admin,
        status=AccountStatus.active,
        verification_status=VerificationStatus.verified,
    )


# ---------------------------------------------------------------------------
# Login / refresh / logout
# ---------------------------------------------------------------------------


def authenticate(
    store: AccountStore,
    password: str,
    email: str | None = None,
    username: str | None = None,
    ip: str | None = None,
    device: str | None = None,
    remember_me: bool = False,
) -> LoginResult:
    """Password login.

    Order of checks: account exists -> not locked -> password -> status ->
    verification. A wrong password counts toward the lockout even for
    inactive accounts; the failure that reaches the threshold is reported as
    AccountLocked rather than InvalidCredentials.
    """
    account = None
    if email:
        account = store.get_by_email(email)
    elif username:
        account = store.get_by_username(username)

    if account is None:
        verify_password(password, DUMMY_HASH)
        raise InvalidCredentials()

    if is_locked(account.security):
        raise AccountLocked(remaining_lockout_minutes(account.security))

    if not verify_password(password, account.hashed_password):
        locked = record_failed_login(account.security)
        store.save_account(account)
        logger.warning(
            "Failed login attempt for account id=%s (%d consecutive)",
            account.id,
            account.security.failed_login_attempts,
        )
        if locked:
            logger.warning("Account id=%s locked for %d minutes", account.id, _settings.lockout_minutes)
            raise AccountLocked(remaining_lockout_minutes(account.security))
        raise InvalidCredentials()

    if account.status != AccountStatus.active:
        raise AccountNotActive(account.status.value)
    if account.verification_status != VerificationStatus.verified:
        raise AccountNotVerified()

    record_successful_login(account.security, ip=ip)

    expires_in = _settings.remember_me_expire_seconds if remember_me else _settings.access_token_expire_seconds
    access_token = issue_token(account.id, TokenKind.access, expire_seconds=expires_in)
    refresh_jti = secrets.token_hex(8)
    refresh_token = issue_token(account.id, TokenKind.refresh, jti=refresh_jti)
    add_session(account.security, access_token, device=device, ip=ip)
    add_refresh_token(account.security, refresh_jti)
    store.save_account(account)

    logger.info("Account id=%s logged in", account.id)
    return LoginResult(account, access_token, refresh_token, expires_in)


def refresh_access_token(
    store: AccountStore,
    refresh_token: str,
    ip: str | None = None,
    device: str | None = None,
) -> LoginResult:
    """Exchange a refresh token for a new access token (registered as a session).

    The refresh token itself is returned unchanged. It must still be on the
    account's refresh list. clear_sessions() and the session cap take it off,
    after which it raises SessionInvalid.
    """
    claims = verify_token(refresh_token, TokenKind.refresh)
    account = store.get_by_id(claims.account_id)
    if account is None:
        raise AccountGone()
    if account.status != AccountStatus.active:
        raise AccountNotActive(account.status.value)
    if not has_refresh_token(account.security, claims.jti):
        logger.warning("Revoked refresh token presented for account id=%s", account.id)
        raise SessionInvalid()
    if is_locked(account.security):
        raise AccountLocked(remaining_lockout_minutes(account.security))

    access_token = issue_token(account.id, TokenKind.access)
    add_session(account.security, access_token, device=device, ip=ip)
    store.save_account(account)
    logger.info("Access token refreshed for account id=%s", account.id)
    return LoginResult(account, access_token, refresh_token, _settings.access_token_expire_seconds)


def logout(store: AccountStore, account: Account, token: str) -> None:
    remove_session(account.security, token)
    store.save_account(account)
    logger.info("Account id=%s logged out", account.id)


def logout_all(store: AccountStore, account: Account) -> None:
    clear_sessions(account.security)
    store.save_account(account)
    logger.info("Account id=%s logged out from all devices", account.id)


# ---------------------------------------------------------------------------
# Password management and verification
# ---------------------------------------------------------------------------


def change_password(
    store: AccountStore,
    account: Account,
    current_password: str,
    new_password: str,
    logout_all_devices: bool = False,
) -> None:
    if not verify_password(current_password, account.hashed_password):
        raise BadRequest("Current password is incorrect")
    set_password(account, new_password)
    if logout_all_devices:
        clear_sessions(account.security)
    store.save_account(account)
    logger.info("Password changed for account id=%s", account.id)


def request_password_reset(store: AccountStore, email: str) -> str | None:
    """Start a password reset. Returns the raw token, or None for unknown emails.

    Only the SHA-256 of the token is stored. Callers must answer identically
    whether or not the email exists.
    """
    account = store.get_by_email(email)
    if account is None:
        return None
    raw = secrets.token_hex(32)
    account.password_reset_token = _hash_token(raw)
    account.password_reset_expires = _now() + timedelta(seconds=_settings.password_reset_expire_seconds)
    store.save_account(account)
    logger.info("Password reset requested for account id=%s", account.id)
    return raw


def reset_password(store: AccountStore, token: str, new_password: str) -> Account:
    """Complete a password reset. Every session is revoked."""
    account = store.get_by_reset_token_hash(_hash_token(token))
    if account is None or account.password_reset_expires is None or account.password_reset_expires <= _now():
        raise BadRequest("Invalid or expired reset token")
    set_password(account, new_password)
    account.password_reset_token = None
    account.password_reset_expires = None
    clear_sessions(account.security)
    store.save_account(account)
    logger.info("Password reset completed for account id=%s", account.id)
    return account


def issue_email_verification(store: AccountStore, account: Account) -> str:
    raw = secrets.token_hex(32)
    account.email_verification_token = _hash_token(raw)
    account.email_verification_expires = _now() + timedelta(seconds=_settings.email_verification_expire_seconds)
    store.save_account(account)
    return raw


def verify_email(store: AccountStore, token: str) -> Account:
    """Mark the account verified and active."""
    account = store.get_by_verification_token_hash(_hash_token(token))
    if (
        account is None
        or account.email_verification_expires is None
        or account.email_verification_expires <= _now()
    ):
        raise BadRequest("Invalid or expired verification token")
    account.verification_status = VerificationStatus.verified
    account.status = AccountStatus.active
    account.email_verification_token = None
    account.email_verification_expires = None
    store.save_account(account)
    logger.info("Email verified for account id=%s", account.id)
    return account


# ---------------------------------------------------------------------------
# Administrative changes
# ---------------------------------------------------------------------------


def update_role(store: AccountStore, account: Account, role: Role, actor_id: int | None = None) -> Account:
    """Change the role and recompute effective permissions.

    Explicit grants in account.permission_grants survive; everything else is
    taken from the new role's defaults.
    """
    account.role = Role(role)
    account.permissions = resolve_permissions(account.role, account.permission_grants)
    account.updated_by = actor_id
    store.save_account(account)
    logger.info("Role of account id=%s changed to %s by id=%s", account.id, account.role.value, actor_id)
    return account


def update_status(
    store: AccountStore, account: Account, status: AccountStatus, actor_id: int | None = None
) -> Account:
    account.status = AccountStatus(status)
    account.updated_by = actor_id
    store.save_account(account)
    logger.info("Status of account id=%s changed to %s by id=%s", account.id, account.status.value, actor_id)
    return account


def grant_permissions(
    store: AccountStore,
    account: Account,
    capabilities: dict[str, bool | None] | None = None,
    custom_permissions: list[str] | None = None,
    actor_id: int | None = None,
) -> Account:
    """Record explicit per-account grants and recompute effective permissions.

    capabilities maps a capability name (snake_case or camelCase) to True /
    False, or to None to drop the explicit grant and inherit from the role
    again. custom_permissions, when given, replaces the stored overrides.
    """
    grants: PermissionSet = account.permission_grants
    for name, value in (capabilities or {}).items():
        field_name = canonical_capability(name)
        if field_name not in CAPABILITIES:
            raise BadRequest(f"Unknown capability: {name}")
        setattr(grants, field_name, value)
    if custom_permissions is not None:
        grants.custom_permissions = list(dict.fromkeys(canonical_capability(c) for c in custom_permissions))
    account.permissions = resolve_permissions(account.role, grants)
    account.updated_by = actor_id
    store.save_account(account)
    logger.info("Permission grants of account id=%s changed by id=%s", account.id, actor_id)
    return account


def assign_facilities(
    store: AccountStore, account: Account, facility_ids: list[str], actor_id: int | None = None
) -> Account:
    account.managed_facilities = list(dict.fromkeys(facility_ids))
    account.updated_by = actor_id
    store.save_account(account)
    return account


def unlock_account(store: AccountStore, account: Account) -> Account:
    unlock(account.security)
    store.save_account(account)
    logger.info("Account id=%s unlocked", account.id)
    return account


def soft_delete_account(store: AccountStore, account: Account, actor_id: int | None = None) -> None:
    """Remove the account from active queries and revoke every session."""
    clear_sessions(account.security)
    store.soft_delete(account, deleted_by=actor_id)
    logger.info("Account id=%s soft-deleted by id=%s", account.id, actor_id)
