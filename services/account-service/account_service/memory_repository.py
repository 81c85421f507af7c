"""In-memory account repository implementation."""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, DefaultDict

from .domain.account import Account, normalize_key
from .domain.contracts import AuditEvent
from .domain.errors import AccountError
from .domain.result import Err, Ok, Result


@dataclass(slots=True)
class AuditLogRecord:
    """Audit entry kept by the in-memory repository."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


class InMemoryAccountRepository:
    """Thread-safe process-local account persistence.

    The index lock covers the user name and email indexes so check-and-insert
    is atomic. Credential updates only take the lock of the account they touch.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._by_user_name: dict[str, str] = {}
        self._by_email: dict[str, str] = {}
        self._index_lock = Lock()
        self._account_locks: DefaultDict[str, Lock] = defaultdict(Lock)
        self._audit_lock = Lock()
        self.audit_log: list[AuditLogRecord] = []

    def _lock_for(self, account_id: str) -> Lock:
        with self._index_lock:
            return self._account_locks[account_id]

    def _record(self, account_id: str, audit: AuditEvent) -> None:
        self.write_audit_event(
            account_id=account_id,
            event_type=audit.event_type,
            actor=audit.actor,
            metadata=audit.metadata,
        )

    def insert_account(self, account: Account, audit: AuditEvent) -> Result[Account, AccountError]:
        with self._index_lock:
            if account.normalized_user_name in self._by_user_name:
                return Err(AccountError.DUPLICATE_USER_NAME)
            if account.normalized_email in self._by_email:
                return Err(AccountError.DUPLICATE_EMAIL)
            # Audit first so a failed write leaves the indexes untouched.
            self._record(account.account_id, audit)
            self._accounts[account.account_id] = account
            self._by_user_name[account.normalized_user_name] = account.account_id
            self._by_email[account.normalized_email] = account.account_id
        return Ok(account)

    def get_by_id(self, account_id: str) -> Account | None:
        return self._accounts.get(account_id)

    def get_by_user_name(self, normalized_user_name: str) -> Account | None:
        account_id = self._by_user_name.get(normalize_key(normalized_user_name))
        return self._accounts.get(account_id) if account_id else None

    def get_by_email(self, normalized_email: str) -> Account | None:
        account_id = self._by_email.get(normalize_key(normalized_email))
        return self._accounts.get(account_id) if account_id else None

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
        with self._lock_for(account_id):
            current = self._accounts.get(account_id)
            if current is None or current.security_stamp != expected_stamp:
                return None
            self._record(account_id, audit)
            updated = dataclasses.replace(
                current,
                password_hash=password_hash if password_hash is not None else current.password_hash,
                email_confirmed=current.email_confirmed or email_confirmed,
                security_stamp=new_stamp,
            )
            self._accounts[account_id] = updated
            return updated

    def delete_account(self, account_id: str) -> bool:
        with self._lock_for(account_id):
            with self._index_lock:
                account = self._accounts.pop(account_id, None)
                if account is None:
                    return False
                self._by_user_name.pop(account.normalized_user_name, None)
                self._by_email.pop(account.normalized_email, None)
                self._account_locks.pop(account_id, None)
        return True

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        with self._audit_lock:
            self.audit_log.append(
                AuditLogRecord(
                    audit_id=len(self.audit_log) + 1,
                    account_id=account_id,
                    event_type=event_type,
                    actor=actor,
                    metadata=dict(metadata or {}),
                    created_at=datetime.now(timezone.utc),
                )
            )
