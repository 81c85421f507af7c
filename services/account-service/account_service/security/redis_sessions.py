"""Redis-backed session manager."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..domain.account import Account
from ..domain.errors import StorageUnavailable
from .sessions import Session, build_claims, new_session_id, validate_claims

logger = logging.getLogger(__name__)


class RedisSessionManager:
    """Distributed session registry storing one JSON document per session.

    Redis expires each key at the end of the session lifetime, so no sweeper
    is needed.
    """

    def __init__(
        self,
        client: Redis,
        *,
        ttl_seconds: int,
        key_prefix: str = "session",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Store the Redis client and session lifetime."""
        self._client = client
        self._ttl = ttl_seconds
        self._key_prefix = key_prefix
        self._clock = clock

    def _key(self, session_id: str) -> str:
        return f"{self._key_prefix}:{session_id}"

    def establish(self, account: Account) -> Session:
        """Persist a new session for ``account`` and return its handle."""
        now = self._clock()
        session = Session(
            session_id=new_session_id(),
            account_id=account.account_id,
            issued_at=datetime.fromtimestamp(now, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(now + self._ttl, tz=timezone.utc),
            claims=build_claims(account),
        )
        document = {
            "account_id": session.account_id,
            "issued_at": session.issued_at.isoformat(),
            "expires_at": session.expires_at.isoformat(),
            "claims": dict(session.claims),
        }
        try:
            self._client.set(self._key(session.session_id), json.dumps(document), ex=self._ttl)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StorageUnavailable("session store unreachable") from exc
        return session

    def resolve(self, evidence: str | None) -> Session | None:
        """Return the live session named by ``evidence`` or ``None``."""
        if not evidence:
            return None
        try:
            raw = self._client.get(self._key(evidence))
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StorageUnavailable("session store unreachable") from exc
        if raw is None:
            return None
        session = self._decode(evidence, raw)
        if session is None:
            return None
        if session.expires_at <= datetime.fromtimestamp(self._clock(), tz=timezone.utc):
            self.clear(evidence)
            return None
        return session

    def clear(self, evidence: str | None) -> None:
        """Delete the session named by ``evidence``; unknown ids are ignored."""
        if not evidence:
            return
        try:
            self._client.delete(self._key(evidence))
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StorageUnavailable("session store unreachable") from exc

    def _decode(self, session_id: str, raw: bytes | str) -> Session | None:
        try:
            data: dict[str, Any] = json.loads(raw)
            return Session(
                session_id=session_id,
                account_id=data["account_id"],
                issued_at=datetime.fromisoformat(data["issued_at"]),
                expires_at=datetime.fromisoformat(data["expires_at"]),
                claims=validate_claims(data.get("claims") or {}),
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("discarding unreadable session document: %s", exc)
            return None
