"""Tests for the in-memory and Redis-backed session managers."""

from __future__ import annotations

from datetime import datetime, timezone

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from account_service.domain.account import Account
from account_service.domain.errors import StorageUnavailable
from account_service.security.redis_sessions import RedisSessionManager
from account_service.security.sessions import (
    MAX_CLAIM_VALUE_LENGTH,
    MAX_CLAIMS,
    InMemorySessionManager,
    SessionManager,
    validate_claims,
)


def _account(user_name: str = "alice") -> Account:
    return Account(
        account_id=f"acct-{user_name}",
        user_name=user_name,
        email=f"{user_name}@example.com",
        password_hash="unused",
        security_stamp="stamp",
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


@pytest.fixture(params=["memory", "redis"])
def manager(request, clock, redis_client) -> SessionManager:
    if request.param == "memory":
        return InMemorySessionManager(ttl_seconds=600, clock=clock)
    return RedisSessionManager(redis_client, ttl_seconds=600, key_prefix="test", clock=clock)


def test_establish_then_resolve(manager):
    session = manager.establish(_account())

    resolved = manager.resolve(session.session_id)

    assert resolved is not None
    assert resolved.account_id == "acct-alice"
    assert dict(resolved.claims) == {
        "sub": "acct-alice",
        "name": "alice",
        "email": "alice@example.com",
        "email_verified": "false",
    }
    assert resolved.issued_at == session.issued_at
    assert resolved.expires_at == session.expires_at


def test_sessions_get_distinct_ids(manager):
    first = manager.establish(_account())
    second = manager.establish(_account())

    assert first.session_id != second.session_id


def test_resolve_unknown_or_missing_evidence(manager):
    assert manager.resolve(None) is None
    assert manager.resolve("") is None
    assert manager.resolve("no-such-session") is None


def test_clear_terminates_only_that_session(manager):
    kept = manager.establish(_account("alice"))
    dropped = manager.establish(_account("bob"))

    manager.clear(dropped.session_id)
    manager.clear(dropped.session_id)

    assert manager.resolve(dropped.session_id) is None
    assert manager.resolve(kept.session_id) is not None


def test_expired_session_does_not_resolve(manager, clock):
    session = manager.establish(_account())
    clock.advance(601)

    assert manager.resolve(session.session_id) is None


def test_claims_are_read_only(manager):
    session = manager.establish(_account())

    with pytest.raises(TypeError):
        session.claims["name"] = "mallory"  # type: ignore[index]


def test_validate_claims_limits():
    with pytest.raises(ValueError):
        validate_claims({f"k{i}": "v" for i in range(MAX_CLAIMS + 1)})
    with pytest.raises(ValueError):
        validate_claims({"name": "x" * (MAX_CLAIM_VALUE_LENGTH + 1)})
    with pytest.raises(ValueError):
        validate_claims({"": "value"})


def test_redis_session_sets_key_ttl(redis_client, clock):
    manager = RedisSessionManager(redis_client, ttl_seconds=600, key_prefix="test", clock=clock)

    session = manager.establish(_account())

    assert 0 < redis_client.ttl(f"test:{session.session_id}") <= 600


def test_redis_session_ignores_corrupt_documents(redis_client, clock):
    manager = RedisSessionManager(redis_client, ttl_seconds=600, key_prefix="test", clock=clock)
    redis_client.set("test:broken", b"{not json")

    assert manager.resolve("broken") is None


def test_redis_outage_is_reported_as_storage_unavailable(clock):
    class DownRedis:
        def set(self, *args, **kwargs):
            raise RedisConnectionError("connection refused")

        def get(self, *args, **kwargs):
            raise RedisConnectionError("connection refused")

        def delete(self, *args, **kwargs):
            raise RedisConnectionError("connection refused")

    manager = RedisSessionManager(DownRedis(), ttl_seconds=600, clock=clock)

    with pytest.raises(StorageUnavailable):
        manager.establish(_account())
    with pytest.raises(StorageUnavailable):
        manager.resolve("anything")
    with pytest.raises(StorageUnavailable):
        manager.clear("anything")
