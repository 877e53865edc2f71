import asyncio

from sqlmodel import select

from tasktracker.database import SessionFactory
from tasktracker.models import User


class UserService:
    """Database-only user lookups. Users are not cached."""

    def __init__(self, sessions: SessionFactory, db_timeout: float = 10.0):
        self.sessions = sessions
        self.db_timeout = db_timeout

    async def _bounded(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self.db_timeout)

    async def get_user(self, user_id: int) -> User | None:
        async with self.sessions() as db:
            return await self._bounded(db.get(User, user_id))

    async def _find_one(self, query) -> User | None:
        async with self.sessions() as db:
            result = await self._bounded(db.exec(query))
            return result.first()

    async def find_by_username(self, username: str) -> User | None:
        return await self._find_one(select(User).where(User.username == username))

    async def find_by_email(self, email: str) -> User | None:
        return await self._find_one(select(User).where(User.email == email))

    async def create_user(self, username: str, email: str, password_hash: str) -> User:
        user = User(username=username, email=email, password_hash=password_hash)
        async with self.sessions() as db:
            db.add(user)
            await self._bounded(db.commit())
            await db.refresh(user)
        return user
