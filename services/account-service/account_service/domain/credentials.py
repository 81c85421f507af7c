"""Credential store combining account persistence with password hashing."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from .account import Account, normalize_key
from .contracts import AuditEvent
from .errors import AccountError
from .result import Result
from ..security.passwords import PasswordHasher


class AccountPersistence(Protocol):
    """Persistence primitives shared by the Postgres and in-memory backends.

    Mutations take the ``AuditEvent`` describing them and commit it in the
    same unit of work: either both land or neither does.
    """

    def insert_account(self, account: Account, audit: AuditEvent) -> Result[Account, AccountError]: ...

    def get_by_id(self, account_id: str) -> Account | None: ...

    def get_by_user_name(self, normalized_user_name: str) -> Account | None: ...

    def get_by_email(self, normalized_email: str) -> Account | None: ...

    def compare_and_set(
        self,
        account_id: str,
        expected_stamp: str,
        new_stamp: str,
        audit: AuditEvent,
        *,
        password_hash: str | None = None,
        email_confirmed: bool = False,
    ) -> Account | None: ...

    def delete_account(self, account_id: str) -> bool: ...

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


def new_security_stamp() -> str:
    return uuid.uuid4().hex


class CredentialStore:
    """Owns account records and their credential material.

    Mutations take the account snapshot the caller read and succeed only if
    its security stamp is still current, returning ``None`` otherwise. Each
    one records its audit entry atomically with the change.
    """

    def __init__(self, repository: AccountPersistence, hasher: PasswordHasher) -> None:
        self._repository = repository
        self._hasher = hasher

    def find_by_id(self, account_id: str) -> Account | None:
        return self._repository.get_by_id(account_id)

    def find_by_user_name(self, user_name: str) -> Account | None:
        return self._repository.get_by_user_name(normalize_key(user_name))

    def find_by_email(self, email: str) -> Account | None:
        return self._repository.get_by_email(normalize_key(email))

    def create(self, user_name: str, email: str, password: str) -> Result[Account, AccountError]:
        """Register a new, unconfirmed account.

        Fails with ``DUPLICATE_USER_NAME`` or ``DUPLICATE_EMAIL`` when either
        value is already taken, compared case-insensitively.
        """
        account = Account(
            account_id=str(uuid.uuid4()),
            user_name=user_name.strip(),
            email=email.strip(),
            password_hash=self._hasher.hash(password),
            security_stamp=new_security_stamp(),
            created_at=datetime.now(timezone.utc),
            email_confirmed=False,
        )
        audit = AuditEvent(
            event_type="account.created",
            actor=account.account_id,
            metadata={"user_name": account.user_name},
        )
        return self._repository.insert_account(account, audit)

    def hash_password(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify_password(self, account: Account, password: str) -> bool:
        return self._hasher.verify(password, account.password_hash)

    def verify_absent_password(self, password: str) -> None:
        self._hasher.verify_absent(password)

    def set_password_hash(self, account: Account, new_hash: str) -> Account | None:
        """Replace the password hash; outstanding tokens stop validating."""
        return self._repository.compare_and_set(
            account.account_id,
            account.security_stamp,
            new_security_stamp(),
            AuditEvent(event_type="account.password_changed", actor=account.account_id),
            password_hash=new_hash,
        )

    def mark_email_confirmed(self, account: Account) -> Account | None:
        """Flag the email as confirmed and rotate the security stamp."""
        return self._repository.compare_and_set(
            account.account_id,
            account.security_stamp,
            new_security_stamp(),
            AuditEvent(event_type="account.email_confirmed", actor=account.account_id),
            email_confirmed=True,
        )

    def delete(self, account_id: str) -> bool:
        return self._repository.delete_account(account_id)

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._repository.write_audit_event(
            account_id=account_id,
            event_type=event_type,
            actor=actor,
            metadata=metadata,
        )
