"""Database repository for account and credential data."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool, PoolTimeout

from .domain.account import Account
from .domain.contracts import AuditEvent
from .domain.errors import AccountError, StorageUnavailable
from .domain.result import Err, Ok, Result

_ACCOUNT_COLUMNS = (
    "account_id, user_name, email, password_hash, security_stamp, created_at, email_confirmed"
)

_CONSTRAINT_ERRORS = {
    "accounts_normalized_user_name_key": AccountError.DUPLICATE_USER_NAME,
    "accounts_normalized_email_key": AccountError.DUPLICATE_EMAIL,
}


class AccountRepository:
    """Postgres-backed account persistence.

    Uniqueness of user names and emails rests on the ``UNIQUE`` constraints
    over the normalised columns; credential updates are compare-and-set on
    ``security_stamp`` so concurrent writers to one account serialise.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection]:
        try:
            with self._pool.connection() as conn:
                yield conn
        except PoolTimeout as exc:
            raise StorageUnavailable("account database pool exhausted") from exc
        except psycopg.OperationalError as exc:
            raise StorageUnavailable("account database unreachable") from exc

    def insert_account(self, account: Account, audit: AuditEvent) -> Result[Account, AccountError]:
        """Insert ``account`` unless its user name or email is already taken."""
        now = datetime.now(timezone.utc)
        try:
            with self._connection() as conn, conn.transaction():
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (
                            account_id, user_name, normalized_user_name, email, normalized_email,
                            password_hash, security_stamp, email_confirmed, created_at, updated_at
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            account.account_id,
                            account.user_name,
                            account.normalized_user_name,
                            account.email,
                            account.normalized_email,
                            account.password_hash,
                            account.security_stamp,
                            account.email_confirmed,
                            account.created_at,
                            now,
                        ),
                    )
                    record = cur.fetchone()
                    self._insert_audit(cur, account.account_id, audit)
        except pg_errors.UniqueViolation as exc:
            constraint = exc.diag.constraint_name or ""
            error = _CONSTRAINT_ERRORS.get(constraint)
            if error is None:
                raise
            return Err(error)
        return Ok(self._map_record(record))

    def get_by_id(self, account_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        return self._fetch_one("account_id = %s", account_id)

    def get_by_user_name(self, normalized_user_name: str) -> Account | None:
        return self._fetch_one("normalized_user_name = %s", normalized_user_name)

    def get_by_email(self, normalized_email: str) -> Account | None:
        return self._fetch_one("normalized_email = %s", normalized_email)

    def _fetch_one(self, where: str, value: str) -> Account | None:
        with self._connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE {where}", (value,))
                row = cur.fetchone()
                if not row:
                    return None
        return self._map_record(row)

    def compare_and_set(
        self,
        account_id: str,
        expected_stamp: str,
        new_stamp: str,
        audit: AuditEvent,
        *,
        password_hash: str | None = None,
        email_confirmed: bool = False,
    ) -> Account | None:
        """Apply a credential change only if the stamp is still ``expected_stamp``.

        Returns the updated account, or ``None`` when the account is gone or
        another writer got there first. ``email_confirmed`` can only be raised.
        The audit row is written in the same transaction as the update.
        """
        with self._connection() as conn, conn.transaction():
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE accounts
                    SET password_hash = COALESCE(%s, password_hash),
                        email_confirmed = email_confirmed OR %s,
                        security_stamp = %s,
                        updated_at = NOW()
                    WHERE account_id = %s AND security_stamp = %s
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (password_hash, email_confirmed, new_stamp, account_id, expected_stamp),
                )
                row = cur.fetchone()
                if row:
                    self._insert_audit(cur, account_id, audit)
        if not row:
            return None
        return self._map_record(row)

    def delete_account(self, account_id: str) -> bool:
        """Remove an account; returns ``False`` if it did not exist."""
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM accounts WHERE account_id = %s", (account_id,))
                deleted = cur.rowcount > 0
            conn.commit()
        return deleted

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            user_name=row[1],
            email=row[2],
            password_hash=row[3],
            security_stamp=row[4],
            created_at=row[5],
            email_confirmed=row[6],
        )

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing account workflow activity."""
        with self._connection() as conn, conn.transaction():
            with conn.cursor() as cur:
                self._insert_audit(
                    cur, account_id, AuditEvent(event_type=event_type, actor=actor, metadata=metadata or {})
                )

    @staticmethod
    def _insert_audit(cur: psycopg.Cursor, account_id: str | None, audit: AuditEvent) -> None:
        cur.execute(
            """
            INSERT INTO account_audit_log (account_id, event_type, actor, metadata)
            VALUES (%s, %s, %s, %s)
            """,
            (account_id, audit.event_type, audit.actor, Json(audit.metadata)),
        )
