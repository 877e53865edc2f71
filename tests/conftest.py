from datetime import datetime, timedelta, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from tasktracker.cache.layer import CacheLayer, MemoryBackend
from tasktracker.core.config import Settings
from tasktracker.database import create_db_and_tables, create_engine, create_session_factory
from tasktracker.services.session_service import SessionManager
from tasktracker.services.task_service import TaskService
from tasktracker.services.user_service import UserService

SESSION_TTL = 86_400
TASK_TTL = 300


class FakeClock:
    """Wall clock and monotonic timer that only move when told to."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._epoch = self.current

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return (self.current - self._epoch).total_seconds()

    def advance(self, seconds: float):
        self.current += timedelta(seconds=seconds)


class FailingBackend:
    """Cache backend whose server is unreachable."""

    def __init__(self):
        self.calls = 0

    async def _fail(self, *args, **kwargs):
        self.calls += 1
        raise RedisConnectionError("Connection refused")

    get = set = delete = expire = ping = aclose = _fail


class CountingSessionFactory:
    """Wraps an async_sessionmaker and counts how many DB sessions were opened."""

    def __init__(self, factory):
        self.factory = factory
        self.opened = 0

    def __call__(self):
        self.opened += 1
        return self.factory()


class _BrokenSession:
    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is down"))

    async def __aexit__(self, *exc):
        return False


class BrokenSessionFactory:
    def __call__(self):
        return _BrokenSession()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'tasktracker.db'}",
        redis_dsn="memory://",
        create_tables=True,
        session_ttl_seconds=SESSION_TTL,
        task_cache_ttl_seconds=TASK_TTL,
        cache_namespace="test:",
        log_level="DEBUG",
    )


@pytest.fixture()
async def engine(settings):
    engine = create_engine(settings)
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def db_sessions(engine) -> CountingSessionFactory:
    return CountingSessionFactory(create_session_factory(engine))


@pytest.fixture()
def cache(clock) -> CacheLayer:
    return CacheLayer(MemoryBackend(timer=clock.monotonic), namespace="test:")


@pytest.fixture()
def broken_cache() -> CacheLayer:
    return CacheLayer(FailingBackend(), namespace="test:")


@pytest.fixture()
def user_service(db_sessions) -> UserService:
    return UserService(db_sessions)


@pytest.fixture()
async def alice(user_service):
    return await user_service.create_user("alice", "alice@example.com", "not-a-real-hash")


@pytest.fixture()
async def bob(user_service):
    return await user_service.create_user("bob", "bob@example.com", "not-a-real-hash")


@pytest.fixture()
def task_service(db_sessions, cache) -> TaskService:
    return TaskService(db_sessions, cache, cache_ttl=TASK_TTL)


@pytest.fixture()
def session_manager(db_sessions, cache, clock) -> SessionManager:
    return SessionManager(db_sessions, cache, ttl_seconds=SESSION_TTL, now=clock.now)
