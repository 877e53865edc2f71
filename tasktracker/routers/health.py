import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from redis.asyncio import RedisError
from sqlalchemy.exc import SQLAlchemyError

from tasktracker.database import ping_database

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _elapsed_ms(start: float) -> str:
    return f"{(time.perf_counter() - start) * 1000:.2f}ms"


@router.get("/health")
async def health_check(request: Request):
    state = request.app.state
    services = {"api": {"status": "healthy"}}

    start = time.perf_counter()
    try:
        await ping_database(state.engine)
        services["database"] = {"status": "healthy", "responseTime": _elapsed_ms(start)}
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        services["database"] = {"status": "unhealthy", "error": str(e)}

    start = time.perf_counter()
    try:
        await state.cache.ping()
        services["cache"] = {"status": "healthy", "responseTime": _elapsed_ms(start)}
    except (RedisError, OSError) as e:
        logger.error(f"Cache health check failed: {e}")
        services["cache"] = {"status": "unhealthy", "error": str(e)}

    healthy = all(service["status"] == "healthy" for service in services.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "ok" if healthy else "degraded",
            "services": services,
            "cache_stats": state.cache.get_stats(),
        },
    )
