from typing import Annotated, cast

from fastapi import Depends, Request
from fastapi.security import APIKeyCookie, APIKeyHeader

from tasktracker.core.config import Settings
from tasktracker.core.errors import AuthenticationError
from tasktracker.models import UserRead
from tasktracker.services.auth_service import AuthService
from tasktracker.services.task_service import TaskService

SESSION_COOKIE = "session_id"

session_header_scheme = APIKeyHeader(name="X-Session-ID", auto_error=False)
session_cookie_scheme = APIKeyCookie(name=SESSION_COOKIE, auto_error=False)


# Services are built once in the lifespan and hung on app.state


def get_app_settings(request: Request) -> Settings:
    return cast(Settings, request.app.state.settings)


def get_auth_service(request: Request) -> AuthService:
    return cast(AuthService, request.app.state.auth_service)


def get_task_service(request: Request) -> TaskService:
    return cast(TaskService, request.app.state.task_service)


async def get_session_token(
    header_token: Annotated[str | None, Depends(session_header_scheme)] = None,
    cookie_token: Annotated[str | None, Depends(session_cookie_scheme)] = None,
) -> str:
    """Session id from the X-Session-ID header, falling back to the cookie."""
    token = header_token or cookie_token
    if not token:
        raise AuthenticationError("Authentication required")
    return token


async def get_current_user(
    auth: Annotated[AuthService, Depends(get_auth_service)],
    token: Annotated[str, Depends(get_session_token)],
) -> UserRead:
    user = await auth.authenticate(token)
    if user is None:
        raise AuthenticationError("Invalid or expired session")
    return user


# Type aliases for dependencies
AppSettingsDep = Annotated[Settings, Depends(get_app_settings)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
SessionTokenDep = Annotated[str, Depends(get_session_token)]
CurrentUserDep = Annotated[UserRead, Depends(get_current_user)]
