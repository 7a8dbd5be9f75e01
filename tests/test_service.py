"""Unit tests for auth/service.py -- account flows against an in-memory store.

Covers:
- account creation: hashing, role-derived permissions, duplicates
- authenticate(): success, unknown account, lockout progression, status and
  verification gates, session registration
- refresh, logout, password change / reset, email verification
- role change and explicit grants (permissions survive a role change)
- soft delete
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth import service
from auth.errors import (
    AccountLocked,
    AccountNotActive,
    AccountNotVerified,
    BadRequest,
    Conflict,
    InvalidCredentials,
    SessionInvalid,
    TokenInvalid,
)
from auth.lockout import is_locked
from auth.models import AccountStatus, Role, VerificationStatus
from auth.passwords import verify_password
from auth.permissions import has_permission
from auth.sessions import has_session
from auth.tokens import TokenKind, verify_token

PASSWORD = "Str0ng!pass"


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def test_create_account_hashes_password_and_resolves_permissions(store, make_account):
    account = make_account("Tech@Example.com", Role.technician)
    assert account.email == "tech@example.com"
    assert account.hashed_password != PASSWORD
    assert verify_password(PASSWORD, account.hashed_password)
    assert account.security.last_password_change is not None
    assert account.permissions.can_manage_iot is True
    assert account.permissions.can_manage_users is False


def test_create_account_refuses_password_bcrypt_cannot_hash(store):
    with pytest.raises(BadRequest):
        service.create_account(store, "long@example.com", "Aa1!" + "x" * 80, "Long", "Pass")
    assert store.get_by_email("long@example.com") is None


def test_create_account_duplicate_email(store, make_account):
    make_account("dup@example.com")
    with pytest.raises(Conflict):
        make_account("DUP@example.com")


def test_create_account_duplicate_username(store, make_account):
    make_account("a@example.com", username="sameuser")
    with pytest.raises(Conflict):
        make_account("b@example.com", username="sameuser")


def test_soft_deleted_email_stays_taken(store, make_account):
    account = make_account("reuse@example.com")
    service.soft_delete_account(store, account)
    with pytest.raises(Conflict):
        make_account("reuse@example.com")


def test_create_super_admin_only_once(store):
    admin = service.create_super_admin(store, "root@example.com", PASSWORD, "Root", "Admin")
    assert admin.role is Role.super_admin
    assert admin.status is AccountStatus.active
    assert admin.verification_status is VerificationStatus.verified
    with pytest.raises(Conflict):
        service.create_super_admin(store, "root2@example.com", PASSWORD, "Root", "Two")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def test_authenticate_success_registers_session(store, make_account):
    make_account("ok@example.com")
    result = service.authenticate(store, PASSWORD, email="ok@example.com", ip="10.0.0.5", device="pytest")
    assert verify_token(result.access_token).account_id == result.account.id
    assert verify_token(result.refresh_token, TokenKind.refresh).account_id == result.account.id

    stored = store.get_by_id(result.account.id)
    assert has_session(stored.security, result.access_token)
    assert stored.security.last_login_ip == "10.0.0.5"
    assert stored.security.failed_login_attempts == 0


def test_authenticate_by_username(store, make_account):
    make_account("named@example.com", username="named")
    result = service.authenticate(store, PASSWORD, username="named")
    assert result.account.email == "named@example.com"


def test_authenticate_remember_me_extends_access_token(store, make_account):
    make_account("remember@example.com")
    short = service.authenticate(store, PASSWORD, email="remember@example.com")
    long = service.authenticate(store, PASSWORD, email="remember@example.com", remember_me=True)
    assert long.expires_in == 7 * 24 * 3600
    assert long.expires_in > short.expires_in


def test_authenticate_unknown_account(store):
    with pytest.raises(InvalidCredentials):
        service.authenticate(store, PASSWORD, email="nobody@example.com")


def test_lockout_after_five_failures(store, make_account):
    make_account("victim@example.com")
    for _ in range(4):
        with pytest.raises(InvalidCredentials):
            service.authenticate(store, "wrong", email="victim@example.com")

    with pytest.raises(AccountLocked) as excinfo:
        service.authenticate(store, "wrong", email="victim@example.com")
    assert excinfo.value.status_code == 403
    assert "30 minutes" in excinfo.value.message

    # Correct password is refused while locked.
    with pytest.raises(AccountLocked):
        service.authenticate(store, PASSWORD, email="victim@example.com")

    stored = store.get_by_email("victim@example.com")
    assert stored.security.failed_login_attempts == 5
    assert is_locked(stored.security)


def test_success_resets_failure_counter(store, make_account):
    make_account("reset@example.com")
    for _ in range(3):
        with pytest.raises(InvalidCredentials):
            service.authenticate(store, "wrong", email="reset@example.com")
    service.authenticate(store, PASSWORD, email="reset@example.com")
    assert store.get_by_email("reset@example.com").security.failed_login_attempts == 0


def test_expired_lockout_allows_login(store, make_account):
    account = make_account("expired@example.com")
    account.security.failed_login_attempts = 5
    account.security.lockout_until = datetime.now(timezone.utc) - timedelta(seconds=1)
    store.save_account(account)
    result = service.authenticate(store, PASSWORD, email="expired@example.com")
    assert result.account.security.failed_login_attempts == 0


def test_inactive_account_cannot_login(store, make_account):
    make_account("off@example.com", status=AccountStatus.suspended)
    with pytest.raises(AccountNotActive) as excinfo:
        service.authenticate(store, PASSWORD, email="off@example.com")
    assert excinfo.value.message == "Account is suspended. Please contact administrator"


def test_unverified_account_cannot_login(store, make_account):
    make_account("unverified@example.com", verification_status=VerificationStatus.pending)
    with pytest.raises(AccountNotVerified):
        service.authenticate(store, PASSWORD, email="unverified@example.com")


def test_login_caps_sessions_at_five(store, make_account):
    make_account("many@example.com")
    tokens = [service.authenticate(store, PASSWORD, email="many@example.com").access_token for _ in range(6)]
    stored = store.get_by_email("many@example.com")
    assert len(stored.security.session_tokens) == 5
    assert not has_session(stored.security, tokens[0])
    assert all(has_session(stored.security, t) for t in tokens[1:])


# ---------------------------------------------------------------------------
# Refresh / logout
# ---------------------------------------------------------------------------


def test_refresh_issues_new_session(store, make_account):
    make_account("refresh@example.com")
    login = service.authenticate(store, PASSWORD, email="refresh@example.com")
    refreshed = service.refresh_access_token(store, login.refresh_token)
    assert refreshed.access_token != login.access_token
    assert has_session(store.get_by_id(login.account.id).security, refreshed.access_token)


def test_refresh_rejects_access_token(store, make_account):
    make_account("wrongkind@example.com")
    login = service.authenticate(store, PASSWORD, email="wrongkind@example.com")
    with pytest.raises(TokenInvalid):
        service.refresh_access_token(store, login.access_token)


def test_refresh_after_logout_all_is_revoked(store, make_account):
    make_account("refresh-all@example.com")
    login = service.authenticate(store, PASSWORD, email="refresh-all@example.com")
    service.logout_all(store, store.get_by_id(login.account.id))
    with pytest.raises(SessionInvalid):
        service.refresh_access_token(store, login.refresh_token)


def test_refresh_token_of_evicted_login_is_revoked(store, make_account):
    make_account("refresh-cap@example.com")
    logins = [service.authenticate(store, PASSWORD, email="refresh-cap@example.com") for _ in range(6)]
    with pytest.raises(SessionInvalid):
        service.refresh_access_token(store, logins[0].refresh_token)
    assert service.refresh_access_token(store, logins[-1].refresh_token).access_token


def test_logout_removes_only_that_session(store, make_account):
    make_account("out@example.com")
    first = service.authenticate(store, PASSWORD, email="out@example.com")
    second = service.authenticate(store, PASSWORD, email="out@example.com")
    account = store.get_by_id(first.account.id)
    service.logout(store, account, first.access_token)
    stored = store.get_by_id(account.id)
    assert not has_session(stored.security, first.access_token)
    assert has_session(stored.security, second.access_token)


def test_logout_all(store, make_account):
    make_account("all@example.com")
    service.authenticate(store, PASSWORD, email="all@example.com")
    account = store.get_by_email("all@example.com")
    service.logout_all(store, account)
    assert store.get_by_id(account.id).security.session_tokens == []


# ---------------------------------------------------------------------------
# Password management and verification
# ---------------------------------------------------------------------------


def test_change_password_requires_current(store, make_account):
    account = make_account("change@example.com")
    with pytest.raises(BadRequest):
        service.change_password(store, account, "wrong", "N3w!password")
    service.change_password(store, account, PASSWORD, "N3w!password")
    assert service.authenticate(store, "N3w!password", email="change@example.com")


def test_change_password_can_logout_everywhere(store, make_account):
    make_account("change2@example.com")
    service.authenticate(store, PASSWORD, email="change2@example.com")
    account = store.get_by_email("change2@example.com")
    service.change_password(store, account, PASSWORD, "N3w!password", logout_all_devices=True)
    assert store.get_by_id(account.id).security.session_tokens == []


def test_password_reset_flow(store, make_account):
    make_account("forgot@example.com")
    service.authenticate(store, PASSWORD, email="forgot@example.com")
    raw = service.request_password_reset(store, "forgot@example.com")
    assert raw

    stored = store.get_by_email("forgot@example.com")
    assert stored.password_reset_token != raw  # only the hash is stored

    service.reset_password(store, raw, "An0ther!pass")
    stored = store.get_by_email("forgot@example.com")
    assert stored.password_reset_token is None
    assert stored.security.session_tokens == []
    assert verify_password("An0ther!pass", stored.hashed_password)
    assert stored.security.refresh_token_ids == []

    with pytest.raises(BadRequest):
        service.reset_password(store, raw, "Th1rd!pass")


def test_password_reset_unknown_email(store):
    assert service.request_password_reset(store, "nobody@example.com") is None


def test_expired_reset_token_rejected(store, make_account):
    make_account("late@example.com")
    raw = service.request_password_reset(store, "late@example.com")
    account = store.get_by_email("late@example.com")
    account.password_reset_expires = datetime.now(timezone.utc) - timedelta(seconds=1)
    store.save_account(account)
    with pytest.raises(BadRequest):
        service.reset_password(store, raw, "An0ther!pass")


def test_verify_email_activates_account(store, make_account):
    account = make_account(
        "pending@example.com",
        status=AccountStatus.pending,
        verification_status=VerificationStatus.pending,
    )
    raw = service.issue_email_verification(store, account)
    verified = service.verify_email(store, raw)
    assert verified.status is AccountStatus.active
    assert verified.verification_status is VerificationStatus.verified
    with pytest.raises(BadRequest):
        service.verify_email(store, raw)


# ---------------------------------------------------------------------------
# Administrative changes
# ---------------------------------------------------------------------------


def test_explicit_grant_survives_role_change(store, make_account):
    account = make_account("tech@example.com", Role.technician)
    service.grant_permissions(store, account, capabilities={"can_manage_billing": True})
    assert has_permission(account.permissions, "can_manage_billing")

    service.update_role(store, account, Role.supervisor)
    stored = store.get_by_id(account.id)
    assert stored.role is Role.supervisor
    assert stored.permissions.can_manage_billing is True
    assert stored.permissions.can_manage_shifts is True
    assert stored.permissions.can_manage_users is False


def test_role_change_without_grants_follows_new_role(store, make_account):
    account = make_account("promote@example.com", Role.user)
    service.update_role(store, account, Role.admin)
    assert all(getattr(account.permissions, name) for name in ("can_manage_users", "can_manage_billing"))
    service.update_role(store, account, Role.guest)
    assert account.permissions.can_view_reports is False


def test_grant_none_reverts_to_role_default(store, make_account):
    account = make_account("revert@example.com", Role.technician)
    service.grant_permissions(store, account, capabilities={"canManageIOT": False})
    assert account.permissions.can_manage_iot is False
    service.grant_permissions(store, account, capabilities={"can_manage_iot": None})
    assert account.permissions.can_manage_iot is True


def test_grant_unknown_capability_rejected(store, make_account):
    account = make_account("unknown@example.com")
    with pytest.raises(BadRequest):
        service.grant_permissions(store, account, capabilities={"can_fly": True})


def test_custom_permissions_replace(store, make_account):
    account = make_account("custom@example.com", Role.guest)
    service.grant_permissions(store, account, custom_permissions=["canManageDocuments"])
    assert has_permission(account.permissions, "can_manage_documents")
    service.grant_permissions(store, account, custom_permissions=[])
    assert not has_permission(account.permissions, "can_manage_documents")


def test_unlock_account(store, make_account):
    account = make_account("locked@example.com")
    account.security.failed_login_attempts = 5
    account.security.lockout_until = datetime.now(timezone.utc) + timedelta(minutes=30)
    store.save_account(account)
    service.unlock_account(store, account)
    assert service.authenticate(store, PASSWORD, email="locked@example.com")


def test_soft_delete_clears_sessions_and_hides(store, make_account):
    make_account("del@example.com")
    service.authenticate(store, PASSWORD, email="del@example.com")
    account = store.get_by_email("del@example.com")
    service.soft_delete_account(store, account, actor_id=1)
    assert store.get_by_id(account.id) is None
    assert store.get_by_id(account.id, include_deleted=True).security.session_tokens == []
    with pytest.raises(InvalidCredentials):
        service.authenticate(store, PASSWORD, email="del@example.com")
