"""
auth/dependencies.py -- FastAPI Depends() helpers: the authorization chain.

get_current_identity() runs one pass per request and fails closed:

  1. Extract   Authorization: Bearer <token>           -> Unauthenticated
  2. Verify    signature / expiry / kind               -> TokenExpired | TokenInvalid
  3. Load      non-deleted account by token subject    -> AccountGone
  4. Status    account.status must be active           -> AccountNotActive
  5. Lockout   auth.lockout.is_locked()                -> AccountLocked
  6. Session   token must be a live session            -> SessionInvalid
  7. Attach    request.state.account / .token / .permissions

Any exception that is not an AuthError (a database error while loading the
account, a corrupt document) is logged and re-raised as InternalFailure; the
caller only ever sees the fixed message.

Step 8, authorization, is a separate set of composable dependencies that
each take the identity from step 7:

  authorize(*roles)           role membership; super_admin always passes
  require_permission(name)    effective capability check
  require_ownership_or_admin  path account id == caller, or admin
  require_facility_access     path facility id in caller's managed_facilities

try_get_current_identity() is the soft variant for routes that serve both
anonymous and authenticated callers: it returns None instead of raising.

Layer rule: this module may import from fastapi (Depends / Request) because
it is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Request

from auth.errors import (
    AccessDenied,
    AccountGone,
    AccountLocked,
    AccountNotActive,
    AuthError,
    InsufficientRole,
    InternalFailure,
    SessionInvalid,
    Unauthenticated,
)
from auth.lockout import is_locked, remaining_lockout_minutes
from auth.models import Account, AccountStatus, PermissionSet, Role
from auth.permissions import has_permission
from auth.sessions import has_session
from auth.store import AccountStore
from auth.tokens import verify_token

logger = logging.getLogger("facilityops.auth")

_ADMIN_ROLES = frozenset({Role.super_admin, Role.admin})

# Roles the ownership check lets through without verifying team membership.
# There is no team model yet; see DESIGN.md "Open questions".
_TEAM_LEAD_ROLES = frozenset({Role.facility_manager, Role.supervisor})


@dataclass
class Identity:
    """The authenticated caller, as attached to the request."""

    account: Account
    token: str

    @property
    def permissions(self) -> PermissionSet:
        return self.account.permissions

    @property
    def role(self) -> Role:
        return self.account.role


def _extract_bearer(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme != "Bearer" or not token:
        raise Unauthenticated()
    return token


def _load_account(request: Request, token: str) -> Account:
    claims = verify_token(token)
    store: AccountStore = request.app.state.account_store
    account = store.get_by_id(claims.account_id)
    if account is None:
        raise AccountGone()
    return account


def get_current_identity(request: Request) -> Identity:
    """Require a valid bearer token bound to a live session of an active account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = _extract_bearer(request)
    try:
        account = _load_account(request, token)
        if account.status != AccountStatus.active:
            raise AccountNotActive(account.status.value)
        if is_locked(account.security):
            raise AccountLocked(remaining_lockout_minutes(account.security))
        if not has_session(account.security, token):
            raise SessionInvalid()
    except AuthError:
        raise
    except Exception as exc:
        logger.exception("Authentication check failed on %s %s", request.method, request.url.path)
        raise InternalFailure() from exc

    request.state.account = account
    request.state.token = token
    request.state.permissions = account.permissions
    return Identity(account=account, token=token)


def try_get_current_identity(request: Request) -> Identity | None:
    """Optional authentication. Never raises.

    Runs extract / verify / load and additionally drops inactive or locked
    accounts. The session list is not consulted.
    """
    try:
        token = _extract_bearer(request)
        account = _load_account(request, token)
    except AuthError:
        return None
    except Exception:
        logger.exception("Optional authentication failed on %s %s", request.method, request.url.path)
        return None
    if account.status != AccountStatus.active or is_locked(account.security):
        return None
    request.state.account = account
    request.state.token = token
    request.state.permissions = account.permissions
    return Identity(account=account, token=token)


# ---------------------------------------------------------------------------
# Authorization predicates
# ---------------------------------------------------------------------------


def authorize(*roles: Role) -> Callable[..., Identity]:
    """Build a dependency that admits only the listed roles (super_admin always).

        @router.get("/reports")
        def route(identity: Identity = Depends(authorize(Role.admin, Role.supervisor))): ...
    """
    allowed = frozenset(Role(r) for r in roles)

    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role is Role.super_admin or identity.role in allowed:
            return identity
        raise InsufficientRole()

    return dependency


require_super_admin = authorize(Role.super_admin)
require_admin = authorize(Role.admin)
require_manager = authorize(Role.admin, Role.facility_manager)
require_supervisor = authorize(Role.admin, Role.facility_manager, Role.supervisor)


def require_permission(capability: str) -> Callable[..., Identity]:
    """Build a dependency that admits callers whose effective set allows capability."""

    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if has_permission(identity.permissions, capability):
            return identity
        raise InsufficientRole()

    return dependency


def require_ownership_or_admin(request: Request, identity: Identity = Depends(get_current_identity)) -> Identity:
    """Admit admins, the account named by the path, and team leads.

    The target is the `account_id` (or `id`) path parameter.
    """
    if identity.role in _ADMIN_ROLES:
        return identity
    target = request.path_params.get("account_id") or request.path_params.get("id")
    if target is not None and str(identity.account.id) == str(target):
        return identity
    if identity.role in _TEAM_LEAD_ROLES:
        # Placeholder: subordinate membership is not modelled, so team leads
        # are permitted for any target.
        return identity
    raise AccessDenied("Access denied. You can only access your own resources")


def require_facility_access(request: Request, identity: Identity = Depends(get_current_identity)) -> Identity:
    """Admit admins and callers whose managed_facilities contains the path's facility_id."""
    if identity.role in _ADMIN_ROLES:
        return identity
    facility_id = request.path_params.get("facility_id")
    if facility_id and str(facility_id) in identity.account.managed_facilities:
        return identity
    raise AccessDenied("Access denied. You do not have permission to access this facility")
