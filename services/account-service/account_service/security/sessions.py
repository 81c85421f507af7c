"""In-memory session manager implementation."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from types import MappingProxyType
from typing import Callable, Mapping, Protocol

from ..domain.account import Account

MAX_CLAIMS = 16
MAX_CLAIM_VALUE_LENGTH = 512


@dataclass(slots=True, frozen=True)
class Session:
    """Evidence that a caller authenticated as ``account_id``.

    ``session_id`` is the opaque value the transport hands back to clients.
    """

    session_id: str
    account_id: str
    issued_at: datetime
    expires_at: datetime
    claims: Mapping[str, str]


def build_claims(account: Account) -> Mapping[str, str]:
    """Snapshot the claims exposed for ``account`` at this instant."""
    return validate_claims(
        {
            "sub": account.account_id,
            "name": account.user_name,
            "email": account.email,
            "email_verified": "true" if account.email_confirmed else "false",
        }
    )


def validate_claims(claims: Mapping[str, str]) -> Mapping[str, str]:
    """Return a read-only copy of ``claims`` after checking size limits."""
    if len(claims) > MAX_CLAIMS:
        raise ValueError(f"sessions carry at most {MAX_CLAIMS} claims")
    for key, value in claims.items():
        if not isinstance(key, str) or not key:
            raise ValueError("claim keys must be non-empty strings")
        if not isinstance(value, str):
            raise ValueError(f"claim {key!r} must be a string")
        if len(value) > MAX_CLAIM_VALUE_LENGTH:
            raise ValueError(f"claim {key!r} exceeds {MAX_CLAIM_VALUE_LENGTH} characters")
    return MappingProxyType(dict(claims))


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionManager(Protocol):
    """Session registry shared by the in-memory and Redis backends."""

    def establish(self, account: Account) -> Session: ...

    def resolve(self, evidence: str | None) -> Session | None: ...

    def clear(self, evidence: str | None) -> None: ...


class InMemorySessionManager:
    """Thread-safe process-local session registry."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.time) -> None:
        """Initialise session lifetime and per-id storage."""
        self._ttl = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = Lock()

    def establish(self, account: Account) -> Session:
        """Create a session for ``account`` and return its handle."""
        now = self._clock()
        session = Session(
            session_id=new_session_id(),
            account_id=account.account_id,
            issued_at=datetime.fromtimestamp(now, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(now + self._ttl, tz=timezone.utc),
            claims=build_claims(account),
        )
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def resolve(self, evidence: str | None) -> Session | None:
        """Return the live session named by ``evidence`` or ``None``."""
        if not evidence:
            return None
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        with self._lock:
            session = self._sessions.get(evidence)
            if session is None:
                return None
            if session.expires_at <= now:
                del self._sessions[evidence]
                return None
            return session

    def clear(self, evidence: str | None) -> None:
        """Terminate the session named by ``evidence``; unknown ids are ignored."""
        if not evidence:
            return
        with self._lock:
            self._sessions.pop(evidence, None)
