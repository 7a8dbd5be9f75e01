"""
auth/models.py -- Domain dataclasses for identity and access-control entities.

Pattern: Data class (pure data container, zero logic). Policies that act on
these shapes live in their own modules: auth/sessions.py (session list),
auth/lockout.py (failure counter), auth/permissions.py (capability matrix).
The store (auth/store.py) persists an Account as one document, so every
nested structure here is owned by exactly one Account.

All timestamps are timezone-aware UTC datetimes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    super_admin = "super_admin"
    admin = "admin"
    facility_manager = "facility_manager"
    supervisor = "supervisor"
    technician = "technician"
    housekeeping = "housekeeping"
    user = "user"
    guest = "guest"


class AccountStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"
    pending = "pending"
    blocked = "blocked"


class VerificationStatus(str, Enum):
    pending = "pending"
    verified = "verified"
    rejected = "rejected"


@dataclass
class SessionToken:
    """One server-tracked login. Appended or removed, never mutated."""

    token: str
    created_at: datetime
    expires_at: datetime
    device: str | None = None
    ip: str | None = None


@dataclass
class SecurityState:
    """Security block embedded in an Account.

    lockout_until is the only lockout state that is stored; whether the
    account is currently locked is computed by auth.lockout.is_locked().

    session_tokens is ordered by insertion (oldest first). Its length is
    capped by auth.sessions.add_session().

    refresh_token_ids holds the jti of every refresh token that may still be
    exchanged, oldest first and capped the same way. Clearing the sessions
    clears it too, which is what revokes outstanding refresh tokens.
    """

    last_password_change: datetime | None = None
    failed_login_attempts: int = 0
    lockout_until: datetime | None = None
    last_login_at: datetime | None = None
    last_login_ip: str | None = None
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None  # never serialized outward
    session_tokens: list[SessionToken] = field(default_factory=list)
    refresh_token_ids: list[str] = field(default_factory=list)


@dataclass
class PermissionSet:
    """Named capabilities plus free-form overrides.

    Each capability is tri-state: None means "not explicitly set". An
    account's permission_grants uses that to tell inherited keys from
    administrator decisions; its effective permissions always has booleans.

    custom_permissions holds literal capability names or the "all" sentinel.
    """

    can_manage_users: bool | None = None
    can_manage_facilities: bool | None = None
    can_manage_services: bool | None = None
    can_manage_iot: bool | None = None
    can_view_reports: bool | None = None
    can_manage_settings: bool | None = None
    can_manage_billing: bool | None = None
    can_access_audit_logs: bool | None = None
    can_manage_employees: bool | None = None
    can_view_employee_reports: bool | None = None
    can_approve_leaves: bool | None = None
    can_manage_attendance: bool | None = None
    can_manage_shifts: bool | None = None
    can_manage_payroll: bool | None = None
    can_view_salary_info: bool | None = None
    can_manage_documents: bool | None = None
    custom_permissions: list[str] = field(default_factory=list)


@dataclass
class Account:
    """Identity root.

    email is stored lower-cased and is unique among all accounts, deleted or
    not. hashed_password, the security block's secrets and session token
    values, and the reset / verification token hashes never leave the server;
    api/models.py builds the outward representation field by field.

    Accounts are never hard-deleted: is_deleted removes them from every
    lookup the store exposes by default while the record stays for audit.

    id is None before the record is written to the database.
    """

    email: str
    first_name: str
    last_name: str
    role: Role = Role.user
    status: AccountStatus = AccountStatus.pending
    verification_status: VerificationStatus = VerificationStatus.pending
    hashed_password: str = ""
    username: str | None = None
    phone: str | None = None
    permissions: PermissionSet = field(default_factory=PermissionSet)  # effective, see auth.permissions
    permission_grants: PermissionSet = field(default_factory=PermissionSet)  # explicit, tri-state
    security: SecurityState = field(default_factory=SecurityState)
    managed_facilities: list[str] = field(default_factory=list)
    email_verification_token: str | None = None  # SHA-256 of the raw token
    email_verification_expires: datetime | None = None
    password_reset_token: str | None = None  # SHA-256 of the raw token
    password_reset_expires: datetime | None = None
    created_by: int | None = None
    updated_by: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    deleted_by: int | None = None
    id: int | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
