"""Unit tests for auth/permissions.py -- role matrix and effective checks."""

import pytest

from auth.models import PermissionSet, Role
from auth.permissions import (
    ALL_PERMISSIONS,
    CAPABILITIES,
    ROLE_DEFAULTS,
    canonical_capability,
    defaults_for,
    effective_capabilities,
    has_permission,
    resolve_permissions,
)


class TestRoleDefaults:
    def test_every_role_has_a_row(self):
        assert set(ROLE_DEFAULTS) == set(Role)

    def test_rows_are_fully_materialized(self):
        for role in Role:
            row = defaults_for(role)
            assert all(isinstance(getattr(row, name), bool) for name in CAPABILITIES), role

    def test_super_admin_carries_all_override(self):
        assert defaults_for(Role.super_admin).custom_permissions == [ALL_PERMISSIONS]

    def test_admin_has_every_capability_without_override(self):
        row = defaults_for(Role.admin)
        assert all(getattr(row, name) for name in CAPABILITIES)
        assert row.custom_permissions == []

    def test_guest_has_nothing(self):
        assert effective_capabilities(defaults_for(Role.guest)) == []

    @pytest.mark.parametrize(
        "role, expected",
        [
            (Role.technician, ["can_manage_iot", "can_view_reports"]),
            (Role.housekeeping, ["can_view_reports"]),
            (Role.user, ["can_view_reports"]),
        ],
    )
    def test_low_privilege_rows(self, role, expected):
        assert effective_capabilities(defaults_for(role)) == expected

    def test_supervisor_row(self):
        assert effective_capabilities(defaults_for(Role.supervisor)) == [
            "can_manage_services",
            "can_manage_iot",
            "can_view_reports",
            "can_view_employee_reports",
            "can_manage_attendance",
            "can_manage_shifts",
        ]

    def test_facility_manager_cannot_touch_users_or_billing(self):
        row = defaults_for(Role.facility_manager)
        assert row.can_manage_facilities is True
        assert row.can_manage_documents is True
        assert row.can_manage_users is False
        assert row.can_manage_billing is False
        assert row.can_manage_payroll is False

    def test_defaults_for_returns_a_copy(self):
        row = defaults_for(Role.user)
        row.can_manage_users = True
        row.custom_permissions.append("x")
        assert ROLE_DEFAULTS[Role.user].can_manage_users is False
        assert ROLE_DEFAULTS[Role.user].custom_permissions == []


class TestHasPermission:
    def test_boolean_true_passes(self):
        assert has_permission(defaults_for(Role.technician), "can_manage_iot")

    def test_boolean_false_fails(self):
        assert not has_permission(defaults_for(Role.technician), "can_manage_billing")

    def test_all_override_passes_everything(self):
        perms = PermissionSet(custom_permissions=[ALL_PERMISSIONS])
        assert all(has_permission(perms, name) for name in CAPABILITIES)
        assert has_permission(perms, "some_future_capability")

    def test_literal_override_passes_that_capability_only(self):
        perms = defaults_for(Role.guest)
        perms.custom_permissions = ["can_manage_billing"]
        assert has_permission(perms, "can_manage_billing")
        assert not has_permission(perms, "can_manage_users")

    def test_camel_case_names_are_accepted(self):
        perms = defaults_for(Role.technician)
        assert has_permission(perms, "canManageIOT")
        assert has_permission(perms, "canViewReports")
        perms.custom_permissions = ["canManageBilling"]
        assert has_permission(perms, "can_manage_billing")

    def test_unknown_capability_fails_without_override(self):
        assert not has_permission(defaults_for(Role.admin), "launch_rockets")


def test_canonical_capability():
    assert canonical_capability("canManageUsers") == "can_manage_users"
    assert canonical_capability("canManageIOT") == "can_manage_iot"
    assert canonical_capability("can_manage_users") == "can_manage_users"
    assert canonical_capability("all") == "all"


class TestResolvePermissions:
    def test_no_grants_gives_role_defaults(self):
        assert resolve_permissions(Role.supervisor) == defaults_for(Role.supervisor)
        assert resolve_permissions(Role.supervisor, PermissionSet()) == defaults_for(Role.supervisor)

    def test_explicit_true_survives(self):
        grants = PermissionSet(can_manage_billing=True)
        assert resolve_permissions(Role.technician, grants).can_manage_billing is True

    def test_explicit_false_beats_role_default(self):
        grants = PermissionSet(can_view_reports=False)
        assert resolve_permissions(Role.admin, grants).can_view_reports is False

    def test_custom_overrides_merge_without_duplicates(self):
        grants = PermissionSet(custom_permissions=["can_manage_payroll", "all"])
        resolved = resolve_permissions(Role.super_admin, grants)
        assert resolved.custom_permissions == ["can_manage_payroll", "all"]

    def test_role_change_keeps_explicit_grants(self):
        grants = PermissionSet(can_manage_billing=True)
        as_technician = resolve_permissions(Role.technician, grants)
        as_supervisor = resolve_permissions(Role.supervisor, grants)
        assert as_technician.can_manage_billing is True
        assert as_supervisor.can_manage_billing is True
        assert as_supervisor.can_manage_shifts is True
        assert as_supervisor.can_manage_users is False

    def test_idempotent(self):
        grants = PermissionSet(can_manage_billing=True, custom_permissions=["x"])
        once = resolve_permissions(Role.supervisor, grants)
        assert resolve_permissions(Role.supervisor, grants) == once
        # Feeding the effective set back in as grants changes nothing either.
        assert resolve_permissions(Role.supervisor, once) == once

    def test_does_not_mutate_grants(self):
        grants = PermissionSet(custom_permissions=["x"])
        resolve_permissions(Role.super_admin, grants)
        assert grants.custom_permissions == ["x"]
        assert grants.can_manage_users is None
