import asyncio
import logging

from sqlmodel import select

from tasktracker.cache.decorators import async_cached
from tasktracker.cache.layer import CacheLayer
from tasktracker.database import SessionFactory
from tasktracker.models import Task, TaskCreate, TaskRead, TaskUpdate, get_utc_now

logger = logging.getLogger(__name__)


def task_key(task_id: int) -> str:
    return f"task:{task_id}"


def user_tasks_key(user_id: int) -> str:
    return f"user:{user_id}:tasks"


class TaskService:
    """
    Cache-aside repository for tasks.

    Reads go cache first, then the database, then repopulate the cache.
    Writes go to the database first and only then delete the affected
    cache keys; cached copies are never updated in place. Ownership checks
    belong to the caller, which compares ``TaskRead.user_id``.
    """

    def __init__(
        self,
        sessions: SessionFactory,
        cache: CacheLayer,
        cache_ttl: int = 300,
        db_timeout: float = 10.0,
    ):
        self.sessions = sessions
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.db_timeout = db_timeout

    async def _bounded(self, awaitable):
        # A stalled database call fails the operation; retrying is up to the caller
        return await asyncio.wait_for(awaitable, timeout=self.db_timeout)

    @async_cached(task_key, TaskRead)
    async def get_task(self, task_id: int):
        async with self.sessions() as db:
            return await self._bounded(db.get(Task, task_id))

    @async_cached(user_tasks_key, list[TaskRead])
    async def list_tasks_for_user(self, user_id: int):
        query = (
            select(Task)
            .where(Task.user_id == user_id)
            .order_by(Task.created_at.desc(), Task.id.desc())
        )
        async with self.sessions() as db:
            result = await self._bounded(db.exec(query))
            return result.all()

    async def create_task(self, user_id: int, task_data: TaskCreate) -> TaskRead:
        task = Task.model_validate(task_data, update={"user_id": user_id})
        async with self.sessions() as db:
            db.add(task)
            await self._bounded(db.commit())
            await db.refresh(task)
        created = TaskRead.model_validate(task)

        await self.cache.delete(user_tasks_key(user_id))
        logger.info(f"Task {created.id} created for user {user_id}")
        return created

    async def update_task(self, task_id: int, task_data: TaskUpdate) -> TaskRead | None:
        # The owner is needed to find the list key to invalidate
        current = await self.get_task(task_id)
        if current is None:
            return None

        update_data = task_data.model_dump(exclude_unset=True)
        async with self.sessions() as db:
            task = await self._bounded(db.get(Task, task_id))
            if task is None:
                # Deleted after the cached read; the cached copy is stale
                await self.cache.delete(task_key(task_id), user_tasks_key(current.user_id))
                return None
            task.sqlmodel_update(update_data)
            task.updated_at = get_utc_now()
            db.add(task)
            await self._bounded(db.commit())
            await db.refresh(task)
        updated = TaskRead.model_validate(task)

        await self.cache.delete(task_key(task_id), user_tasks_key(current.user_id))
        changed = ", ".join(update_data) or "timestamp only"
        logger.info(f"Task {task_id} updated ({changed})")
        return updated

    async def delete_task(self, task_id: int) -> bool:
        current = await self.get_task(task_id)
        if current is None:
            return False

        async with self.sessions() as db:
            task = await self._bounded(db.get(Task, task_id))
            if task is not None:
                await db.delete(task)
                await self._bounded(db.commit())

        await self.cache.delete(task_key(task_id), user_tasks_key(current.user_id))
        if task is None:
            return False
        logger.info(f"Task {task_id} deleted")
        return True
