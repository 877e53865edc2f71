import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tasktracker.cache.layer import CacheLayer
from tasktracker.core.config import Settings, get_settings
from tasktracker.core.errors import AppError
from tasktracker.core.logging_setup import configure_logging
from tasktracker.database import create_db_and_tables, create_engine, create_session_factory
from tasktracker.routers import auth, health, tasks
from tasktracker.services.auth_service import AuthService
from tasktracker.services.session_service import SessionManager
from tasktracker.services.task_service import TaskService
from tasktracker.services.user_service import UserService

logger = logging.getLogger(__name__)


def build_services(app: FastAPI, settings: Settings, engine, cache: CacheLayer):
    """Wire every service to the one engine and the one cache layer."""
    sessions = create_session_factory(engine)
    session_manager = SessionManager(
        sessions,
        cache,
        ttl_seconds=settings.session_ttl_seconds,
        db_timeout=settings.db_timeout_seconds,
    )
    users = UserService(sessions, db_timeout=settings.db_timeout_seconds)

    app.state.settings = settings
    app.state.engine = engine
    app.state.cache = cache
    app.state.auth_service = AuthService(users, session_manager)
    app.state.task_service = TaskService(
        sessions,
        cache,
        cache_ttl=settings.task_cache_ttl_seconds,
        db_timeout=settings.db_timeout_seconds,
    )


async def app_error_handler(_: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500, content={"error": "An unexpected error occurred"}
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_engine(settings)
        cache = CacheLayer.from_settings(settings)
        if settings.create_tables:
            await create_db_and_tables(engine)
        await cache.init_cache()
        build_services(app, settings, engine, cache)
        yield
        await cache.close()
        await engine.dispose()

    app = FastAPI(
        title="Task Tracker API",
        description="Task tracking API with session auth, PostgreSQL and a Redis cache",
        swagger_ui_parameters={"displayRequestDuration": True},
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Include routers
    app.include_router(auth.router)
    app.include_router(tasks.router)
    app.include_router(health.router)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to Task Tracker API",
            "docs": "/docs",
            "version": "1.0.0",
        }

    return app


app = create_app()
