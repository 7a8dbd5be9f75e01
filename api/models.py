"""
API request and response models for FacilityOps REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Outward account representation: AccountResponse.from_account() copies fields
one by one. The password hash, the two-factor secret, session token values
and reset / verification token hashes have no field here and therefore can
never be serialized.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.lockout import is_locked
from auth.models import Account, AccountStatus, PermissionSet, Role, SessionToken, VerificationStatus
from auth.passwords import MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH, check_password_policy
from auth.permissions import CAPABILITIES, effective_capabilities

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. Exactly one of email / username."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=1, max_length=255)
    remember_me: bool = False

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value

    @model_validator(mode="after")
    def exactly_one_identifier(self) -> "LoginRequest":
        if bool(self.email) == bool(self.username):
            raise ValueError("Either email or username is required")
        return self


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_BYTES)
    logout_all_devices: bool = False

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return check_password_policy(value)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)


class ResetPasswordRequest(BaseModel):
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_BYTES)

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return check_password_policy(value)


class AccountCreate(BaseModel):
    """Request body for POST /api/v1/accounts (admin only).

    Accounts created by an administrator are active and verified unless the
    request says otherwise.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_BYTES)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    phone: Optional[str] = Field(default=None, max_length=20)
    role: Role = Role.user
    status: AccountStatus = AccountStatus.active
    verification_status: VerificationStatus = VerificationStatus.verified
    managed_facilities: list[str] = Field(default_factory=list, max_length=100)

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return check_password_policy(value)


class RoleUpdate(BaseModel):
    role: Role


class StatusUpdate(BaseModel):
    status: AccountStatus


class PermissionGrantUpdate(BaseModel):
    """Request body for PATCH /api/v1/accounts/{id}/permissions.

    capabilities: name -> True / False, or null to inherit from the role again.
    custom_permissions: replaces the stored overrides when present.
    """

    capabilities: dict[str, Optional[bool]] = Field(default_factory=dict)
    custom_permissions: Optional[list[str]] = Field(default=None, max_length=50)


class FacilityAssignment(BaseModel):
    facility_ids: list[str] = Field(max_length=100)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PermissionSetResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    can_manage_users: bool
    can_manage_facilities: bool
    can_manage_services: bool
    can_manage_iot: bool
    can_view_reports: bool
    can_manage_settings: bool
    can_manage_billing: bool
    can_access_audit_logs: bool
    can_manage_employees: bool
    can_view_employee_reports: bool
    can_approve_leaves: bool
    can_manage_attendance: bool
    can_manage_shifts: bool
    can_manage_payroll: bool
    can_view_salary_info: bool
    can_manage_documents: bool
    custom_permissions: list[str]

    @classmethod
    def from_permissions(cls, permissions: PermissionSet) -> "PermissionSetResponse":
        values = {name: bool(getattr(permissions, name)) for name in CAPABILITIES}
        return cls(**values, custom_permissions=list(permissions.custom_permissions))


class SecurityResponse(BaseModel):
    """Outward view of the security block. No secrets, no token values."""

    model_config = ConfigDict(frozen=True)

    last_login_at: Optional[datetime]
    last_login_ip: Optional[str]
    last_password_change: Optional[datetime]
    failed_login_attempts: int
    is_locked: bool
    lockout_until: Optional[datetime]
    two_factor_enabled: bool
    active_sessions: int


class AccountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    username: Optional[str]
    first_name: str
    last_name: str
    full_name: str
    phone: Optional[str]
    role: Role
    status: AccountStatus
    verification_status: VerificationStatus
    managed_facilities: list[str]
    permissions: PermissionSetResponse
    effective_capabilities: list[str]
    security: SecurityResponse
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        security = account.security
        return cls(
            id=account.id,
            email=account.email,
            username=account.username,
            first_name=account.first_name,
            last_name=account.last_name,
            full_name=account.full_name,
            phone=account.phone,
            role=account.role,
            status=account.status,
            verification_status=account.verification_status,
            managed_facilities=list(account.managed_facilities),
            permissions=PermissionSetResponse.from_permissions(account.permissions),
            effective_capabilities=effective_capabilities(account.permissions),
            security=SecurityResponse(
                last_login_at=security.last_login_at,
                last_login_ip=security.last_login_ip,
                last_password_change=security.last_password_change,
                failed_login_attempts=security.failed_login_attempts,
                is_locked=is_locked(security),
                lockout_until=security.lockout_until,
                two_factor_enabled=security.two_factor_enabled,
                active_sessions=len(security.session_tokens),
            ),
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    account: AccountResponse


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class SessionResponse(BaseModel):
    """One live session. The token value itself is never returned."""

    model_config = ConfigDict(frozen=True)

    created_at: datetime
    expires_at: datetime
    device: Optional[str]
    ip: Optional[str]
    current: bool

    @classmethod
    def from_session(cls, session: SessionToken, current_token: str) -> "SessionResponse":
        return cls(
            created_at=session.created_at,
            expires_at=session.expires_at,
            device=session.device,
            ip=session.ip,
            current=session.token == current_token,
        )


class MessageResponse(BaseModel):
    """Generic acknowledgement. token is only filled when EXPOSE_RESET_TOKENS is on."""

    model_config = ConfigDict(frozen=True)

    message: str
    token: Optional[str] = None


class FacilityAccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    facility_id: str
    account_id: int
    granted: bool = True


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    role: Optional[Role] = None
