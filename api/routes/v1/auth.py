"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/register                -- self-registration (pending until verified)
  POST /api/v1/auth/login                   -- password login; returns access + refresh tokens
  POST /api/v1/auth/refresh                 -- new access token from a refresh token
  POST /api/v1/auth/logout                  -- revoke the presented session
  POST /api/v1/auth/logout-all              -- revoke every session of the caller
  GET  /api/v1/auth/me                      -- current account with effective permissions
  GET  /api/v1/auth/sessions                -- caller's live sessions (no token values)
  POST /api/v1/auth/change-password         -- requires current password
  POST /api/v1/auth/forgot-password         -- start reset; same answer for unknown emails
  POST /api/v1/auth/reset-password/{token}  -- complete reset; revokes all sessions
  GET  /api/v1/auth/verify-email/{token}    -- mark account verified and active

Security:
  Login, registration and forgot-password are rate-limited per IP (slowapi).
  Login failures count toward the per-account lockout (auth/lockout.py).
  Cache-Control: no-store on every response that carries a token.
  Failures are raised as auth.errors classes and rendered by api/main.py.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    AccountCreate,
    AccountResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    ResetPasswordRequest,
    SessionResponse,
)
from auth import service
from auth.dependencies import Identity, get_current_identity
from auth.models import AccountStatus, Role, VerificationStatus
from auth.store import AccountStore
from core.config import get_settings

# Auth policy:
# - register, login, refresh, forgot-password, reset-password, verify-email: public
# - logout, logout-all, me, sessions, change-password: get_current_identity
router = APIRouter()

_settings = get_settings()


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=MessageResponse, status_code=201)
@limiter.limit(LOGIN_RATE_LIMIT)
def register(request: Request, body: AccountCreate) -> JSONResponse:
    """Create a self-registered account.

    Role, status and verification status from the body are ignored: the
    account is a pending `user` until the email is verified.
    """
    store: AccountStore = request.app.state.account_store
    account = service.create_account(
        store,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        username=body.username,
        phone=body.phone,
        role=Role.user,
        status=AccountStatus.pending,
        verification_status=VerificationStatus.pending,
    )
    token = service.issue_email_verification(store, account)
    return _no_store(
        MessageResponse(
            message="Registration successful. Please verify your email.",
            token=token if _settings.expose_reset_tokens else None,
        ).model_dump(),
        status_code=201,
    )


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email or username and password.

    The access token is registered as a session on the account; the oldest
    session is evicted once the per-account cap is exceeded.
    """
    store: AccountStore = request.app.state.account_store
    result = service.authenticate(
        store,
        body.password,
        email=body.email,
        username=body.username,
        ip=_client_ip(request),
        device=request.headers.get("User-Agent"),
        remember_me=body.remember_me,
    )
    return _no_store(
        LoginResponse(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=result.expires_in,
            account=AccountResponse.from_account(result.account),
        ).model_dump(mode="json")
    )


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    store: AccountStore = request.app.state.account_store
    result = service.refresh_access_token(
        store,
        body.refresh_token,
        ip=_client_ip(request),
        device=request.headers.get("User-Agent"),
    )
    return _no_store(
        RefreshResponse(
            access_token=result.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106
            expires_in=result.expires_in,
        ).model_dump()
    )


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    """Start a password reset. The answer does not reveal whether the email exists."""
    store: AccountStore = request.app.state.account_store
    token = service.request_password_reset(store, body.email)
    return _no_store(
        MessageResponse(
            message="If an account with this email exists, a password reset link has been sent",
            token=token if _settings.expose_reset_tokens else None,
        ).model_dump()
    )


@router.post("/auth/reset-password/{token}", response_model=MessageResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> MessageResponse:
    store: AccountStore = request.app.state.account_store
    service.reset_password(store, token, body.password)
    return MessageResponse(message="Password reset successfully")


@router.get("/auth/verify-email/{token}", response_model=MessageResponse)
def verify_email(request: Request, token: str) -> MessageResponse:
    store: AccountStore = request.app.state.account_store
    service.verify_email(store, token)
    return MessageResponse(message="Email verified successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, identity: Identity = Depends(get_current_identity)) -> MessageResponse:
    """Revoke the session of the presented token. Other devices stay logged in."""
    store: AccountStore = request.app.state.account_store
    service.logout(store, identity.account, identity.token)
    return MessageResponse(message="Logout successful")


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, identity: Identity = Depends(get_current_identity)) -> MessageResponse:
    store: AccountStore = request.app.state.account_store
    service.logout_all(store, identity.account)
    return MessageResponse(message="Logged out from all devices successfully")


@router.get("/auth/me", response_model=AccountResponse)
def me(identity: Identity = Depends(get_current_identity)) -> AccountResponse:
    return AccountResponse.from_account(identity.account)


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(identity: Identity = Depends(get_current_identity)) -> list[SessionResponse]:
    return [SessionResponse.from_session(s, identity.token) for s in identity.account.security.session_tokens]


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    store: AccountStore = request.app.state.account_store
    service.change_password(
        store,
        identity.account,
        body.current_password,
        body.new_password,
        logout_all_devices=body.logout_all_devices,
    )
    return MessageResponse(message="Password changed successfully")
