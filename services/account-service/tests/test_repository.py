"""Postgres repository and pool lifecycle against scripted connections."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from types import SimpleNamespace

import psycopg
import pytest
from fastapi.testclient import TestClient
from psycopg import errors as pg_errors
from psycopg_pool import PoolTimeout

from account_service import main
from account_service.domain.account import Account
from account_service.domain.contracts import AuditEvent
from account_service.domain.errors import AccountError, StorageUnavailable
from account_service.domain.result import Err, Ok
from account_service.repository import AccountRepository

CREATED_AT = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _account(**overrides) -> Account:
    fields = dict(
        account_id="acct-1",
        user_name="Alice",
        email="Alice@example.com",
        password_hash="$2b$04$hash",
        security_stamp="stamp-1",
        created_at=CREATED_AT,
        email_confirmed=False,
    )
    fields.update(overrides)
    return Account(**fields)


def _row(account: Account) -> tuple:
    return (
        account.account_id,
        account.user_name,
        account.email,
        account.password_hash,
        account.security_stamp,
        account.created_at,
        account.email_confirmed,
    )


def _unique_violation(constraint: str) -> pg_errors.UniqueViolation:
    class Violation(pg_errors.UniqueViolation):
        diag = SimpleNamespace(constraint_name=constraint)

    return Violation("duplicate key value violates unique constraint")


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self.rowcount = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, query: str, params=None) -> None:
        statement = " ".join(query.split())
        for fragment, error in self._conn.failures.items():
            if fragment in statement:
                raise error
        self._conn.statements.append((statement, params))

    def fetchone(self):
        return self._conn.rows.pop(0) if self._conn.rows else None


class FakeConnection:
    """Records statements and whether the surrounding transaction committed."""

    def __init__(self) -> None:
        self.statements: list[tuple[str, tuple]] = []
        self.rows: list[tuple] = []
        self.failures: dict[str, Exception] = {}
        self.committed = False
        self.rolled_back = False

    def cursor(self, row_factory=None) -> FakeCursor:
        return FakeCursor(self)

    @contextmanager
    def transaction(self):
        try:
            yield
        except BaseException:
            self.rolled_back = True
            raise
        self.committed = True

    def commit(self) -> None:
        self.committed = True


class FakePool:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn

    @contextmanager
    def connection(self):
        yield self.conn


@pytest.fixture
def conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def repository(conn) -> AccountRepository:
    return AccountRepository(FakePool(conn))


def test_insert_writes_account_and_audit_in_one_transaction(repository, conn):
    account = _account()
    conn.rows.append(_row(account))
    audit = AuditEvent("account.created", actor="acct-1", metadata={"user_name": "Alice"})

    result = repository.insert_account(account, audit)

    assert result == Ok(account)
    assert conn.committed and not conn.rolled_back
    (account_sql, account_params), (audit_sql, audit_params) = conn.statements
    assert account_sql.startswith("INSERT INTO accounts")
    assert account_params[2] == "alice"
    assert account_params[4] == "alice@example.com"
    assert audit_sql.startswith("INSERT INTO account_audit_log")
    assert audit_params[:3] == ("acct-1", "account.created", "acct-1")
    assert audit_params[3].obj == {"user_name": "Alice"}


@pytest.mark.parametrize(
    ("constraint", "expected"),
    [
        ("accounts_normalized_user_name_key", AccountError.DUPLICATE_USER_NAME),
        ("accounts_normalized_email_key", AccountError.DUPLICATE_EMAIL),
    ],
)
def test_insert_maps_unique_constraints(repository, conn, constraint, expected):
    conn.failures["INSERT INTO accounts"] = _unique_violation(constraint)

    result = repository.insert_account(_account(), AuditEvent("account.created"))

    assert result == Err(expected)
    assert conn.rolled_back
    assert conn.statements == []


def test_insert_reraises_unknown_constraint(repository, conn):
    conn.failures["INSERT INTO accounts"] = _unique_violation("accounts_pkey")

    with pytest.raises(pg_errors.UniqueViolation):
        repository.insert_account(_account(), AuditEvent("account.created"))


def test_failed_audit_insert_rolls_back_account(repository, conn):
    account = _account()
    conn.rows.append(_row(account))
    conn.failures["INSERT INTO account_audit_log"] = psycopg.OperationalError("connection lost")

    with pytest.raises(StorageUnavailable):
        repository.insert_account(account, AuditEvent("account.created"))

    assert conn.rolled_back
    assert not conn.committed


def test_compare_and_set_guards_on_stamp(repository, conn):
    updated = _account(security_stamp="stamp-2", password_hash="$2b$04$new")
    conn.rows.append(_row(updated))

    result = repository.compare_and_set(
        "acct-1",
        "stamp-1",
        "stamp-2",
        AuditEvent("account.password_changed", actor="acct-1"),
        password_hash="$2b$04$new",
    )

    assert result == updated
    (update_sql, update_params), (audit_sql, _) = conn.statements
    assert "WHERE account_id = %s AND security_stamp = %s" in update_sql
    assert update_params == ("$2b$04$new", False, "stamp-2", "acct-1", "stamp-1")
    assert audit_sql.startswith("INSERT INTO account_audit_log")
    assert conn.committed


def test_compare_and_set_with_stale_stamp_writes_no_audit(repository, conn):
    result = repository.compare_and_set(
        "acct-1", "stale", "stamp-2", AuditEvent("account.email_confirmed"), email_confirmed=True
    )

    assert result is None
    assert len(conn.statements) == 1
    assert conn.statements[0][0].startswith("UPDATE accounts")


def test_pool_timeout_is_storage_unavailable():
    class ExhaustedPool:
        @contextmanager
        def connection(self):
            raise PoolTimeout("no connection available")
            yield

    repository = AccountRepository(ExhaustedPool())

    with pytest.raises(StorageUnavailable):
        repository.get_by_id("acct-1")


def test_lifespan_waits_for_pool_to_close(monkeypatch):
    pools = []

    class RecordingPool:
        def __init__(self, conninfo, open=True):
            self.calls = []
            pools.append(self)

        def open(self):
            self.calls.append("open")

        def close(self):
            self.calls.append("close")

        def wait_close(self):
            self.calls.append("wait_close")

    monkeypatch.setattr(main, "ConnectionPool", RecordingPool)
    monkeypatch.setattr(main, "settings", main.Settings(store_backend="postgres", session_backend="memory"))

    with TestClient(main.app) as client:
        assert client.get("/healthz").json() == {"status": "ok"}

    assert pools[0].calls == ["open", "close", "wait_close"]
