from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from tasktracker.core.errors import SessionRevokeError
from tasktracker.models import UserSession
from tasktracker.services.session_service import SessionManager, session_key

from conftest import SESSION_TTL, BrokenSessionFactory


async def _durable_row(db_sessions, token) -> UserSession | None:
    async with db_sessions.factory() as db:
        return await db.get(UserSession, token)


async def test_tokens_are_random_and_unique(session_manager, alice):
    tokens = {await session_manager.create(alice.id) for _ in range(5)}

    assert len(tokens) == 5
    assert all(len(token) >= 43 for token in tokens)


async def test_create_writes_both_stores(session_manager, db_sessions, cache, clock, alice):
    token = await session_manager.create(alice.id)

    cached = await cache.get(session_key(token))
    assert cached["user_id"] == alice.id

    row = await _durable_row(db_sessions, token)
    assert row.user_id == alice.id
    assert row.expires_at.replace(tzinfo=None) == (
        clock.now() + timedelta(seconds=SESSION_TTL)
    ).replace(tzinfo=None)


async def test_validate_hit_does_not_touch_database(session_manager, db_sessions, alice):
    token = await session_manager.create(alice.id)
    db_sessions.opened = 0

    assert await session_manager.validate(token) == alice.id
    assert db_sessions.opened == 0


async def test_validate_falls_back_to_database_and_rehydrates(
    session_manager, db_sessions, cache, alice
):
    token = await session_manager.create(alice.id)
    assert await session_manager.validate(token) == alice.id

    # Evicted out-of-band
    await cache.delete(session_key(token))

    assert await session_manager.validate(token) == alice.id
    assert (await cache.get(session_key(token)))["user_id"] == alice.id

    db_sessions.opened = 0
    assert await session_manager.validate(token) == alice.id
    assert db_sessions.opened == 0


async def test_validate_renews_cache_ttl(session_manager, cache, clock, alice):
    token = await session_manager.create(alice.id)

    clock.advance(SESSION_TTL - 60)
    assert await session_manager.validate(token) == alice.id

    # Past the original cache TTL, the renewed entry is still there
    clock.advance(120)
    assert await cache.get(session_key(token)) is not None


async def test_durable_expiry_is_never_extended(session_manager, db_sessions, clock, alice):
    token = await session_manager.create(alice.id)
    original = (await _durable_row(db_sessions, token)).expires_at

    for _ in range(5):
        clock.advance(3600)
        assert await session_manager.validate(token) == alice.id

    assert (await _durable_row(db_sessions, token)).expires_at == original


async def test_session_hard_expires_despite_continuous_use(session_manager, clock, alice):
    token = await session_manager.create(alice.id)

    for _ in range(23):
        clock.advance(3600)
        assert await session_manager.validate(token) == alice.id

    clock.advance(3600)
    assert await session_manager.validate(token) is None


async def test_expired_session_is_invalid_regardless_of_cache(
    session_manager, cache, clock, alice
):
    token = await session_manager.create(alice.id)
    clock.advance(SESSION_TTL + 1)

    # A fresh cache entry written after the database expiry passed
    await cache.set(
        session_key(token),
        {"user_id": alice.id, "expires_at": (clock.now() - timedelta(seconds=1)).timestamp()},
        ttl=SESSION_TTL,
    )

    assert await session_manager.validate(token) is None
    assert await cache.get(session_key(token)) is None


async def test_expired_session_not_rehydrated(session_manager, cache, clock, alice):
    token = await session_manager.create(alice.id)
    await cache.delete(session_key(token))
    clock.advance(SESSION_TTL)

    assert await session_manager.validate(token) is None
    assert await cache.get(session_key(token)) is None


@pytest.mark.parametrize("token", [None, "", "x" * 500, "never-issued"])
async def test_malformed_or_unknown_tokens_are_invalid(session_manager, token):
    assert await session_manager.validate(token) is None


async def test_malformed_token_skips_both_stores(session_manager, db_sessions):
    db_sessions.opened = 0

    assert await session_manager.validate("x" * 500) is None
    assert db_sessions.opened == 0


async def test_validate_with_cache_down_uses_database(db_sessions, broken_cache, clock, alice):
    manager = SessionManager(db_sessions, broken_cache, ttl_seconds=SESSION_TTL, now=clock.now)

    token = await manager.create(alice.id)

    assert await manager.validate(token) == alice.id


async def test_validate_fails_closed_when_database_down(cache, clock):
    manager = SessionManager(BrokenSessionFactory(), cache, ttl_seconds=SESSION_TTL, now=clock.now)

    assert await manager.validate("some-token-not-in-cache") is None


async def test_create_fails_when_database_down(cache, clock):
    manager = SessionManager(BrokenSessionFactory(), cache, ttl_seconds=SESSION_TTL, now=clock.now)

    with pytest.raises(SQLAlchemyError):
        await manager.create(1)


async def test_revoke_removes_from_both_stores(session_manager, db_sessions, cache, alice):
    token = await session_manager.create(alice.id)

    await session_manager.revoke(token)

    assert await cache.get(session_key(token)) is None
    assert await _durable_row(db_sessions, token) is None
    assert await session_manager.validate(token) is None


async def test_revoke_with_cache_down_still_removes_durable_row(
    db_sessions, cache, broken_cache, clock, alice
):
    token = await SessionManager(db_sessions, cache, now=clock.now).create(alice.id)
    manager = SessionManager(db_sessions, broken_cache, now=clock.now)

    await manager.revoke(token)

    assert await _durable_row(db_sessions, token) is None


async def test_revoke_with_database_down_still_clears_cache(cache, clock):
    await cache.set(session_key("tok"), {"user_id": 1, "expires_at": 1e12}, ttl=60)
    manager = SessionManager(BrokenSessionFactory(), cache, now=clock.now)

    await manager.revoke("tok")

    assert await cache.get(session_key("tok")) is None


async def test_revoke_raises_when_both_stores_down(broken_cache, clock):
    manager = SessionManager(BrokenSessionFactory(), broken_cache, now=clock.now)

    with pytest.raises(SessionRevokeError):
        await manager.revoke("tok")


async def test_revoke_all_logs_user_out_everywhere(session_manager, alice, bob):
    first = await session_manager.create(alice.id)
    second = await session_manager.create(alice.id)
    other = await session_manager.create(bob.id)

    assert await session_manager.revoke_all(alice.id) == 2

    assert await session_manager.validate(first) is None
    assert await session_manager.validate(second) is None
    assert await session_manager.validate(other) == bob.id


async def test_purge_expired_drops_only_old_rows(session_manager, db_sessions, clock, alice):
    old = await session_manager.create(alice.id)
    clock.advance(SESSION_TTL / 2)
    recent = await session_manager.create(alice.id)
    clock.advance(SESSION_TTL / 2)

    assert await session_manager.purge_expired() == 1

    assert await _durable_row(db_sessions, old) is None
    assert await _durable_row(db_sessions, recent) is not None
