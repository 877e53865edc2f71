import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from tasktracker.cache.layer import CacheLayer
from tasktracker.core.errors import SessionRevokeError
from tasktracker.database import SessionFactory
from tasktracker.models import UserSession, get_utc_now

logger = logging.getLogger(__name__)

# token_urlsafe(32) yields 43 characters; anything far outside that is not ours
MAX_TOKEN_LENGTH = 100


def session_key(token: str) -> str:
    return f"session:{token}"


def generate_session_id() -> str:
    """256 bits from the OS CSPRNG, URL-safe so it fits in a header or cookie."""
    return secrets.token_urlsafe(32)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back; stored values are always UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SessionManager:
    """
    Login sessions kept in two places.

    The ``sessions`` table is authoritative: a row is valid until its
    ``expires_at``, which is set once at creation and never moved. The cache
    maps token -> user id (plus that fixed expiry) with a TTL that slides
    forward on every successful validation. Losing the cache entry only costs
    a database lookup, and no cache hit outlives the database expiry.
    """

    def __init__(
        self,
        sessions: SessionFactory,
        cache: CacheLayer,
        ttl_seconds: int = 86_400,
        db_timeout: float = 10.0,
        now: Callable[[], datetime] = get_utc_now,
    ):
        self.sessions = sessions
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.db_timeout = db_timeout
        self.now = now

    async def _bounded(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self.db_timeout)

    async def create(self, user_id: int) -> str:
        """
        Establish a session and return its token.

        The database insert must succeed; its errors propagate. A cache write
        failure is tolerated, the first validate() will rehydrate the entry.
        """
        token = generate_session_id()
        created_at = self.now()
        row = UserSession(
            id=token,
            user_id=user_id,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=self.ttl_seconds),
        )

        await self._cache_session(token, row.user_id, row.expires_at)

        async with self.sessions() as db:
            db.add(row)
            await self._bounded(db.commit())

        logger.info(f"Session created for user {user_id}")
        return token

    async def _cache_session(self, token: str, user_id: int, expires_at: datetime):
        # The absolute expiry travels with the entry so a hit can enforce it
        entry = {"user_id": user_id, "expires_at": expires_at.timestamp()}
        await self.cache.set(session_key(token), entry, self.ttl_seconds)

    async def validate(self, token: str | None) -> int | None:
        """Return the owning user id, or None for any kind of invalid session."""
        if not token or len(token) > MAX_TOKEN_LENGTH:
            return None

        key = session_key(token)
        cached = await self.cache.get(key)
        if isinstance(cached, dict) and "user_id" in cached:
            if cached.get("expires_at", 0) <= self.now().timestamp():
                await self.cache.delete(key)
                return None
            await self.cache.expire(key, self.ttl_seconds)
            return cached["user_id"]

        try:
            row = await self._find_unexpired(token)
        except (SQLAlchemyError, TimeoutError) as e:
            # Cannot confirm the session, so it is not valid
            logger.warning(f"Session lookup failed, rejecting token: {e}")
            return None

        if row is None:
            return None

        await self._cache_session(token, row.user_id, _as_utc(row.expires_at))
        logger.debug(f"Session rehydrated into cache for user {row.user_id}")
        return row.user_id

    async def _find_unexpired(self, token: str) -> UserSession | None:
        query = select(UserSession).where(
            UserSession.id == token,
            UserSession.expires_at > self.now(),
        )
        async with self.sessions() as db:
            result = await self._bounded(db.exec(query))
            return result.first()

    async def revoke(self, token: str):
        """
        Remove the session from both stores, best effort on each.

        Raises SessionRevokeError only when neither store took the removal.
        """
        removed_from_cache = await self.cache.delete(session_key(token))

        removed_from_db = True
        try:
            async with self.sessions() as db:
                row = await self._bounded(db.get(UserSession, token))
                if row is not None:
                    await db.delete(row)
                    await self._bounded(db.commit())
        except (SQLAlchemyError, TimeoutError) as e:
            logger.error(f"Session delete failed in database: {e}")
            removed_from_db = False

        if not (removed_from_cache or removed_from_db):
            raise SessionRevokeError("Session could not be revoked")

        logger.info("Session revoked")

    async def revoke_all(self, user_id: int) -> int:
        """Log a user out everywhere. Returns the number of sessions removed."""
        query = select(UserSession).where(UserSession.user_id == user_id)
        async with self.sessions() as db:
            result = await self._bounded(db.exec(query))
            rows = result.all()
            for row in rows:
                await db.delete(row)
            await self._bounded(db.commit())

        tokens = [row.id for row in rows]
        if tokens:
            await self.cache.delete(*(session_key(token) for token in tokens))
        logger.info(f"Revoked {len(tokens)} session(s) for user {user_id}")
        return len(tokens)

    async def purge_expired(self) -> int:
        """Drop database rows past their expiry. Cache entries expire on their own."""
        query = select(UserSession).where(UserSession.expires_at <= self.now())
        async with self.sessions() as db:
            result = await self._bounded(db.exec(query))
            rows = result.all()
            for row in rows:
                await db.delete(row)
            await self._bounded(db.commit())
        logger.info(f"Purged {len(rows)} expired session(s)")
        return len(rows)
