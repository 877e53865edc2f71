import logging
from functools import wraps
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


def async_cached(key_builder: Callable[..., str], model: Any, ttl_attr: str = "cache_ttl"):
    """
    Cache-aside decorator for async service methods.

    The decorated method loads from the database; the wrapper checks
    ``self.cache`` first and, on a miss, stores whatever the loader returned
    for ``getattr(self, ttl_attr)`` seconds. ``None`` is never cached, so a
    missing row is looked up again on every call.

    ``model`` is the return type (``TaskRead`` or ``list[TaskRead]``); values
    go through a TypeAdapter in both directions so a hit and a miss return
    the same shape. A cached value that no longer fits ``model`` (written by
    an older release, or by something else sharing the namespace) is deleted
    and treated as a miss. key_builder receives the method's args without
    ``self``.

    Example:
      @async_cached(lambda task_id: f"task:{task_id}", TaskRead)
      async def get_task(self, task_id): ...
    """
    adapter = TypeAdapter(model)

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            key = key_builder(*args, **kwargs)

            cached = await self.cache.get(key)
            if cached is not None:
                try:
                    return adapter.validate_python(cached)
                except ValidationError as e:
                    logger.error(f"Discarding unreadable cache entry {key}: {e}")
                    await self.cache.delete(key)

            value = await fn(self, *args, **kwargs)
            if value is None:
                return None

            value = adapter.validate_python(value, from_attributes=True)
            await self.cache.set(
                key, adapter.dump_python(value, mode="json"), getattr(self, ttl_attr)
            )
            return value

        return wrapper

    return decorator
