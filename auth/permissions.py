"""
auth/permissions.py -- Role-based capability matrix and effective-permission checks.

Two permission sets live on every Account:

  permission_grants -- explicit per-account grants made by an administrator.
      Tri-state: None means "inherit from the role", True / False is an
      explicit decision that survives any role change.

  permissions -- the effective, fully materialized set. Always
      resolve_permissions(role, permission_grants). Recomputed on account
      creation, on every role change and on every grant change
      (auth/service.py); never edited directly.

ROLE_DEFAULTS is a read-only table. resolve_permissions() lays the role's
defaults UNDER the explicit grants, so only keys the administrator never set
come from the role. Because it is a pure function of (role, grants), applying
it twice gives the same result as applying it once.

has_permission() is the single capability check. It passes when the boolean
is True, when custom_permissions contains "all", or when custom_permissions
names the capability literally -- the last one lets an administrator grant a
single capability to a low-privilege role without touching the matrix.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import fields, replace
from types import MappingProxyType

from auth.models import PermissionSet, Role

ALL_PERMISSIONS = "all"

CAPABILITIES: tuple[str, ...] = tuple(f.name for f in fields(PermissionSet) if f.name != "custom_permissions")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join("IOT" if part == "iot" else part.capitalize() for part in rest)


# Stored overrides written by older clients use camelCase ("canManageBilling").
_ALIASES: MappingProxyType = MappingProxyType({_camel(name): name for name in CAPABILITIES})


def canonical_capability(name: str) -> str:
    """Map a camelCase capability name to its snake_case field; pass others through."""
    return _ALIASES.get(name, name)


def _matrix(*granted: str, custom: tuple[str, ...] = ()) -> PermissionSet:
    values = {name: name in granted for name in CAPABILITIES}
    return PermissionSet(**values, custom_permissions=list(custom))


ROLE_DEFAULTS: MappingProxyType = MappingProxyType(
    {
        Role.super_admin: _matrix(*CAPABILITIES, custom=(ALL_PERMISSIONS,)),
        Role.admin: _matrix(*CAPABILITIES),
        Role.facility_manager: _matrix(
            "can_manage_facilities",
            "can_manage_services",
            "can_manage_iot",
            "can_view_reports",
            "can_manage_employees",
            "can_view_employee_reports",
            "can_approve_leaves",
            "can_manage_attendance",
            "can_manage_shifts",
            "can_manage_documents",
        ),
        Role.supervisor: _matrix(
            "can_manage_services",
            "can_manage_iot",
            "can_view_reports",
            "can_view_employee_reports",
            "can_manage_attendance",
            "can_manage_shifts",
        ),
        Role.technician: _matrix("can_manage_iot", "can_view_reports"),
        Role.housekeeping: _matrix("can_view_reports"),
        Role.user: _matrix("can_view_reports"),
        Role.guest: _matrix(),
    }
)


def copy_permissions(permissions: PermissionSet) -> PermissionSet:
    return replace(permissions, custom_permissions=list(permissions.custom_permissions))


def defaults_for(role: Role) -> PermissionSet:
    """Return a fresh copy of the role's baseline capability set."""
    return copy_permissions(ROLE_DEFAULTS[Role(role)])


def resolve_permissions(role: Role, grants: PermissionSet | None = None) -> PermissionSet:
    """Merge the role defaults under the explicit grants.

    Booleans: an explicit grant (True or False) wins; None falls back to the
    role default. Custom overrides: the grants' entries first, then any role
    default entry not already present.
    """
    resolved = defaults_for(role)
    if grants is None:
        return resolved
    for name in CAPABILITIES:
        value = getattr(grants, name)
        if value is not None:
            setattr(resolved, name, value)
    custom = [canonical_capability(c) for c in grants.custom_permissions]
    for entry in resolved.custom_permissions:
        if entry not in custom:
            custom.append(entry)
    resolved.custom_permissions = custom
    return resolved


def has_permission(permissions: PermissionSet, capability: str) -> bool:
    name = canonical_capability(capability)
    if name in CAPABILITIES and getattr(permissions, name) is True:
        return True
    overrides = {canonical_capability(c) for c in permissions.custom_permissions}
    return ALL_PERMISSIONS in overrides or name in overrides


def effective_capabilities(permissions: PermissionSet) -> list[str]:
    """Names of every capability has_permission() would allow."""
    return [name for name in CAPABILITIES if has_permission(permissions, name)]
