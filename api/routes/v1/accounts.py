"""
api/routes/v1/accounts.py -- Account administration and access-scope endpoints.

Routes:
  POST   /api/v1/accounts                           -- create account (admin)
  GET    /api/v1/accounts                           -- list accounts, ?role= &status= (admin)
  GET    /api/v1/accounts/{account_id}              -- one account (self, team lead, or admin)
  PATCH  /api/v1/accounts/{account_id}/role         -- change role, recompute permissions (admin)
  PATCH  /api/v1/accounts/{account_id}/status       -- change status (admin)
  PATCH  /api/v1/accounts/{account_id}/permissions  -- explicit capability grants (super admin)
  PUT    /api/v1/accounts/{account_id}/facilities   -- replace managed facility list (admin)
  POST   /api/v1/accounts/{account_id}/unlock       -- clear a lockout (admin)
  POST   /api/v1/accounts/{account_id}/verification -- issue a new verification token (admin)
  DELETE /api/v1/accounts/{account_id}              -- soft delete (admin)
  GET    /api/v1/facilities/{facility_id}/access    -- facility-scope check for the caller

Guards:
  Only a super admin may create, promote to, modify or delete a super admin.
  Nobody can change their own role or status, or delete themselves, so the
  acting super admin always remains.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    AccountCreate,
    AccountResponse,
    FacilityAccessResponse,
    FacilityAssignment,
    MessageResponse,
    PermissionGrantUpdate,
    RoleUpdate,
    StatusUpdate,
)
from auth import service
from auth.dependencies import (
    Identity,
    require_admin,
    require_facility_access,
    require_ownership_or_admin,
    require_super_admin,
)
from auth.errors import BadRequest, InsufficientRole, NotFound
from auth.models import Account, AccountStatus, Role
from auth.store import AccountStore
from core.config import get_settings

# Auth policy:
# - GET /accounts/{id}:                require_ownership_or_admin
# - PATCH /accounts/{id}/permissions:  require_super_admin
# - GET /facilities/{id}/access:       require_facility_access
# - everything else:                   require_admin
router = APIRouter()

_settings = get_settings()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load(store: AccountStore, account_id: int) -> Account:
    account = store.get_by_id(account_id)
    if account is None:
        raise NotFound("User not found.")
    return account


def _guard_super_admin_target(actor: Identity, target: Account) -> None:
    if target.role is Role.super_admin and actor.role is not Role.super_admin:
        raise InsufficientRole("Only a super admin can modify a super admin account.")


def _guard_not_self(actor: Identity, target: Account, action: str) -> None:
    if actor.account.id == target.id:
        raise BadRequest(f"You cannot {action} your own account.")


# ---------------------------------------------------------------------------
# Account administration
# ---------------------------------------------------------------------------


@router.post("/accounts", response_model=AccountResponse, status_code=201)
def create_account(
    request: Request,
    body: AccountCreate,
    identity: Identity = Depends(require_admin),
) -> AccountResponse:
    if body.role is Role.super_admin and identity.role is not Role.super_admin:
        raise InsufficientRole("Only a super admin can create a super admin account.")
    store: AccountStore = request.app.state.account_store
    account = service.create_account(
        store,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        username=body.username,
        phone=body.phone,
        role=body.role,
        status=body.status,
        verification_status=body.verification_status,
        managed_facilities=body.managed_facilities,
        created_by=identity.account.id,
    )
    return AccountResponse.from_account(account)


@router.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    request: Request,
    role: Optional[Role] = None,
    status: Optional[AccountStatus] = None,
    identity: Identity = Depends(require_admin),
) -> list[AccountResponse]:
    store: AccountStore = request.app.state.account_store
    return [AccountResponse.from_account(a) for a in store.list_accounts(role=role, status=status)]


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    request: Request,
    account_id: int,
    identity: Identity = Depends(require_ownership_or_admin),
) -> AccountResponse:
    store: AccountStore = request.app.state.account_store
    return AccountResponse.from_account(_load(store, account_id))


@router.patch("/accounts/{account_id}/role", response_model=AccountResponse)
def update_role(
    request: Request,
    account_id: int,
    body: RoleUpdate,
    identity: Identity = Depends(require_admin),
) -> AccountResponse:
    """Change the role. Explicit grants survive; the rest follows the new role."""
    store: AccountStore = request.app.state.account_store
    target = _load(store, account_id)
    _guard_not_self(identity, target, "change the role of")
    _guard_super_admin_target(identity, target)
    if body.role is Role.super_admin and identity.role is not Role.super_admin:
        raise InsufficientRole("Only a super admin can grant the super admin role.")
    return AccountResponse.from_account(service.update_role(store, target, body.role, identity.account.id))


@router.patch("/accounts/{account_id}/status", response_model=AccountResponse)
def update_status(
    request: Request,
    account_id: int,
    body: StatusUpdate,
    identity: Identity = Depends(require_admin),
) -> AccountResponse:
    store: AccountStore = request.app.state.account_store
    target = _load(store, account_id)
    _guard_not_self(identity, target, "change the status of")
    _guard_super_admin_target(identity, target)
    return AccountResponse.from_account(service.update_status(store, target, body.status, identity.account.id))


@router.patch("/accounts/{account_id}/permissions", response_model=AccountResponse)
def update_permissions(
    request: Request,
    account_id: int,
    body: PermissionGrantUpdate,
    identity: Identity = Depends(require_super_admin),
) -> AccountResponse:
    store: AccountStore = request.app.state.account_store
    target = _load(store, account_id)
    account = service.grant_permissions(
        store,
        target,
        capabilities=body.capabilities,
        custom_permissions=body.custom_permissions,
        actor_id=identity.account.id,
    )
    return AccountResponse.from_account(account)


@router.put("/accounts/{account_id}/facilities", response_model=AccountResponse)
def assign_facilities(
    request: Request,
    account_id: int,
    body: FacilityAssignment,
    identity: Identity = Depends(require_admin),
) -> AccountResponse:
    store: AccountStore = request.app.state.account_store
    target = _load(store, account_id)
    account = service.assign_facilities(store, target, body.facility_ids, identity.account.id)
    return AccountResponse.from_account(account)


@router.post("/accounts/{account_id}/unlock", response_model=AccountResponse)
def unlock_account(
    request: Request,
    account_id: int,
    identity: Identity = Depends(require_admin),
) -> AccountResponse:
    store: AccountStore = request.app.state.account_store
    target = _load(store, account_id)
    _guard_super_admin_target(identity, target)
    return AccountResponse.from_account(service.unlock_account(store, target))


@router.post("/accounts/{account_id}/verification", response_model=MessageResponse)
def issue_verification(
    request: Request,
    account_id: int,
    identity: Identity = Depends(require_admin),
) -> MessageResponse:
    store: AccountStore = request.app.state.account_store
    target = _load(store, account_id)
    token = service.issue_email_verification(store, target)
    return MessageResponse(
        message="Verification email issued",
        token=token if _settings.expose_reset_tokens else None,
    )


@router.delete("/accounts/{account_id}", status_code=204)
def delete_account(
    request: Request,
    account_id: int,
    identity: Identity = Depends(require_admin),
) -> Response:
    """Soft delete: the account disappears from lookups and loses every session."""
    store: AccountStore = request.app.state.account_store
    target = _load(store, account_id)
    _guard_not_self(identity, target, "delete")
    _guard_super_admin_target(identity, target)
    service.soft_delete_account(store, target, identity.account.id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Facility scope
# ---------------------------------------------------------------------------


@router.get("/facilities/{facility_id}/access", response_model=FacilityAccessResponse)
def facility_access(
    facility_id: str,
    identity: Identity = Depends(require_facility_access),
) -> FacilityAccessResponse:
    """Answer 200 when the caller may act on the facility, 403 otherwise."""
    return FacilityAccessResponse(facility_id=facility_id, account_id=identity.account.id)
