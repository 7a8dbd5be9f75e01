"""
tests/conftest.py -- Shared test fixtures for the FacilityOps identity tests.

This module provides:
  - store / make_account: an isolated in-memory AccountStore for unit tests
  - _make_test_store(): named shared-memory store for API integration tests
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api: module-scoped ApiHarness (TestClient + store + login helpers)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API tests because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true            get_settings() auto-generates both signing keys
  BCRYPT_ROUNDS=4       keeps hashing fast
  LOGIN_RATE_LIMIT      high enough that the per-IP limiter never trips
  EXPOSE_RESET_TOKENS   reset / verification tokens come back in responses
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set before any auth/core import -- Settings is cached on first use.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("EXPOSE_RESET_TOKENS", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth import service
from auth.models import Account, AccountStatus, Role, VerificationStatus
from auth.store import AccountStore

# Satisfies the password policy in api/models.py.
PASSWORD = "Str0ng!pass"


def _create(
    store: AccountStore,
    email: str,
    role: Role = Role.user,
    password: str = PASSWORD,
    status: AccountStatus = AccountStatus.active,
    verification_status: VerificationStatus = VerificationStatus.verified,
    **kwargs,
) -> Account:
    return service.create_account(
        store,
        email=email,
        password=password,
        first_name="Test",
        last_name=role.value.replace("_", " ").title(),
        role=role,
        status=status,
        verification_status=verification_status,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def make_account(store: AccountStore) -> Callable[..., Account]:
    """Return a factory that creates an active, verified account in `store`."""

    def factory(email: str, role: Role = Role.user, **kwargs) -> Account:
        return _create(store, email, role, **kwargs)

    return factory


# ---------------------------------------------------------------------------
# API integration fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AccountStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return AccountStore(db_url=f"sqlite:///file:test_accounts_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: AccountStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        yield

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    store: AccountStore

    def create(self, email: str, role: Role = Role.user, **kwargs) -> Account:
        return _create(self.store, email, role, **kwargs)

    def login(self, email: str, password: str = PASSWORD, **extra) -> str:
        resp = self.client.post("/api/v1/auth/login", json={"email": email, "password": password, **extra})
        assert resp.status_code == 200, f"login failed for {email}: {resp.status_code} {resp.text}"
        return resp.json()["access_token"]

    def create_and_login(self, email: str, role: Role = Role.user, **kwargs) -> tuple[Account, dict[str, str]]:
        account = self.create(email, role, **kwargs)
        return account, auth_headers(self.login(email))


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness bound to a fresh store for the calling test module.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers and middleware but an isolated in-memory store.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=store)

    store.close()
