"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_account_to_document / _row_to_account are the mappers. Route, service and
dependency code never touches SQL directly.

Document layout:
  Each account is one row. The columns that are looked up or filtered on
  (email, username, role, status, is_deleted, reset / verification token
  hashes) are real indexed columns; the full account, including the nested
  security.session_tokens[] list, is serialized as JSON into `document`.
  There is no separate sessions table.

Write model:
  save_account() writes the whole document back (read-modify-write). Two
  concurrent requests for the same account are last-write-wins: under a burst
  of parallel failed logins the failure counter can under-count, delaying the
  lockout by at most one attempt. This is an accepted tolerance; a stricter
  deployment would serialize per-account writes or use a conditional update.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from auth.models import (
    Account,
    AccountStatus,
    PermissionSet,
    Role,
    SecurityState,
    SessionToken,
    VerificationStatus,
)
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # lower-cased
    Column("username", String(50), unique=True),  # NULLs are distinct in UNIQUE
    Column("role", String(30), nullable=False, index=True),
    Column("status", String(20), nullable=False, index=True),
    Column("is_deleted", Integer, nullable=False, server_default="0", index=True),
    Column("password_reset_token", String(64), index=True),
    Column("email_verification_token", String(64), index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("document", Text, nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _is_memory_url(db_url: str) -> bool:
    return ":memory:" in db_url or "mode=memory" in db_url


def _dt(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account documents.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account_id = store.create_account(Account(email="a@b.io", first_name="A", last_name="B"))
        account = store.get_by_id(account_id)
        account.security.failed_login_attempts += 1
        store.save_account(account)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        engine_args: dict = {}
        if db_url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
            if _is_memory_url(db_url):
                # One connection keeps the in-memory database alive across threads.
                engine_args["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account, assign account.id and return it.

        Raises sqlalchemy.exc.IntegrityError if the email or username is
        already taken. auth/service.py checks first and maps the race that
        slips past the check to Conflict.
        """
        now = _now()
        account.email = account.email.lower()
        account.created_at = account.created_at or now
        account.updated_at = now
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.insert().values(**_columns(account)))
            conn.commit()
        account.id = result.inserted_primary_key[0]
        return account.id

    def save_account(self, account: Account) -> None:
        """Write the whole account document back (last-write-wins)."""
        if account.id is None:
            raise ValueError("save_account() requires a persisted account (id is None)")
        account.email = account.email.lower()
        account.updated_at = _now()
        with self.engine.connect() as conn:
            conn.execute(_accounts.update().where(_accounts.c.id == account.id).values(**_columns(account)))
            conn.commit()

    def soft_delete(self, account: Account, deleted_by: int | None = None) -> None:
        """Flag the account as deleted. The row is kept for audit history."""
        account.is_deleted = True
        account.deleted_at = _now()
        account.deleted_by = deleted_by
        self.save_account(account)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, account_id: int, include_deleted: bool = False) -> Account | None:
        return self._one(_accounts.c.id == account_id, include_deleted)

    def get_by_email(self, email: str, include_deleted: bool = False) -> Account | None:
        """Case-insensitive: emails are stored lower-cased."""
        return self._one(_accounts.c.email == email.strip().lower(), include_deleted)

    def get_by_username(self, username: str, include_deleted: bool = False) -> Account | None:
        return self._one(_accounts.c.username == username, include_deleted)

    def get_by_reset_token_hash(self, token_hash: str) -> Account | None:
        return self._one(_accounts.c.password_reset_token == token_hash, False)

    def get_by_verification_token_hash(self, token_hash: str) -> Account | None:
        return self._one(_accounts.c.email_verification_token == token_hash, False)

    def list_accounts(
        self,
        role: Role | None = None,
        status: AccountStatus | None = None,
        include_deleted: bool = False,
    ) -> list[Account]:
        """Return accounts ordered by email, optionally filtered by role / status."""
        query = _accounts.select()
        if role is not None:
            query = query.where(_accounts.c.role == Role(role).value)
        if status is not None:
            query = query.where(_accounts.c.status == AccountStatus(status).value)
        if not include_deleted:
            query = query.where(_accounts.c.is_deleted == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_accounts.c.email)).fetchall()
        return [_row_to_account(r) for r in rows]

    def has_accounts(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (result or 0) > 0

    def count_active_super_admins(self) -> int:
        """Live super admins. Used to keep at least one and to guard bootstrap."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_accounts)
                .where(
                    (_accounts.c.role == Role.super_admin.value)
                    & (_accounts.c.status == AccountStatus.active.value)
                    & (_accounts.c.is_deleted == 0)
                )
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()

    def _one(self, condition, include_deleted: bool) -> Account | None:
        query = _accounts.select().where(condition)
        if not include_deleted:
            query = query.where(_accounts.c.is_deleted == 0)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_account(row) if row is not None else None


# ---------------------------------------------------------------------------
# Mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _account_to_document(account: Account) -> dict:
    doc = _jsonable(asdict(account))
    doc.pop("id", None)
    return doc


def _columns(account: Account) -> dict:
    return {
        "email": account.email,
        "username": account.username,
        "role": Role(account.role).value,
        "status": AccountStatus(account.status).value,
        "is_deleted": 1 if account.is_deleted else 0,
        "password_reset_token": account.password_reset_token,
        "email_verification_token": account.email_verification_token,
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat(),
        "document": json.dumps(_account_to_document(account)),
    }


def _permissions_from(doc: dict | None) -> PermissionSet:
    doc = dict(doc or {})
    doc["custom_permissions"] = list(doc.get("custom_permissions") or [])
    return PermissionSet(**doc)


def _security_from(doc: dict | None) -> SecurityState:
    doc = doc or {}
    return SecurityState(
        last_password_change=_dt(doc.get("last_password_change")),
        failed_login_attempts=int(doc.get("failed_login_attempts") or 0),
        lockout_until=_dt(doc.get("lockout_until")),
        last_login_at=_dt(doc.get("last_login_at")),
        last_login_ip=doc.get("last_login_ip"),
        two_factor_enabled=bool(doc.get("two_factor_enabled")),
        two_factor_secret=doc.get("two_factor_secret"),
        session_tokens=[
            SessionToken(
                token=s["token"],
                created_at=_dt(s["created_at"]),
                expires_at=_dt(s["expires_at"]),
                device=s.get("device"),
                ip=s.get("ip"),
            )
            for s in doc.get("session_tokens") or []
        ],
        refresh_token_ids=list(doc.get("refresh_token_ids") or []),
    )


def _row_to_account(row) -> Account:
    doc = json.loads(row.document)
    return Account(
        id=row.id,
        email=row.email,
        username=row.username,
        first_name=doc.get("first_name", ""),
        last_name=doc.get("last_name", ""),
        phone=doc.get("phone"),
        role=Role(row.role),
        status=AccountStatus(row.status),
        verification_status=VerificationStatus(doc.get("verification_status", VerificationStatus.pending.value)),
        hashed_password=doc.get("hashed_password", ""),
        permissions=_permissions_from(doc.get("permissions")),
        permission_grants=_permissions_from(doc.get("permission_grants")),
        security=_security_from(doc.get("security")),
        managed_facilities=list(doc.get("managed_facilities") or []),
        email_verification_token=row.email_verification_token,
        email_verification_expires=_dt(doc.get("email_verification_expires")),
        password_reset_token=row.password_reset_token,
        password_reset_expires=_dt(doc.get("password_reset_expires")),
        created_by=doc.get("created_by"),
        updated_by=doc.get("updated_by"),
        created_at=_dt(row.created_at),
        updated_at=_dt(row.updated_at),
        is_deleted=bool(row.is_deleted),
        deleted_at=_dt(doc.get("deleted_at")),
        deleted_by=doc.get("deleted_by"),
    )
