from __future__ import annotations

import time

import pytest

from account_service.domain.account import Account
from account_service.domain.credentials import CredentialStore
from account_service.domain.service import AccountService
from account_service.memory_repository import InMemoryAccountRepository
from account_service.security.passwords import PasswordHasher
from account_service.security.sessions import InMemorySessionManager
from account_service.security.tokens import TokenCodec


class FakeClock:
    """Controllable stand-in for ``time.time``."""

    def __init__(self) -> None:
        self.now = time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingEmailSender:
    """Captures confirmation tokens instead of sending mail."""

    def __init__(self) -> None:
        self.sent: list[tuple[Account, str]] = []

    def send_email_confirmation_token(self, account: Account, token: str) -> None:
        self.sent.append((account, token))

    def token_for(self, account_id: str) -> str:
        for account, token in reversed(self.sent):
            if account.account_id == account_id:
                return token
        raise KeyError(account_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def store(repository) -> CredentialStore:
    # bcrypt's minimum cost keeps the suite fast
    return CredentialStore(repository, PasswordHasher(rounds=4))


@pytest.fixture
def codec(clock) -> TokenCodec:
    return TokenCodec(
        "test-secret-with-at-least-32-bytes!!",
        issuer="accounts.test",
        ttl_seconds=3600,
        clock=clock,
    )


@pytest.fixture
def sessions(clock) -> InMemorySessionManager:
    return InMemorySessionManager(ttl_seconds=600, clock=clock)


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def service(store, codec, sessions, email_sender) -> AccountService:
    return AccountService(store, codec, sessions, email_sender)
