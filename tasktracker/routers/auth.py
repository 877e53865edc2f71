from fastapi import APIRouter, Response, status

from tasktracker.deps import (
    SESSION_COOKIE,
    AppSettingsDep,
    AuthServiceDep,
    CurrentUserDep,
    SessionTokenDep,
)
from tasktracker.models import LoginRequest, LoginResponse, UserCreate, UserRead

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, auth: AuthServiceDep):
    """Register a new user"""
    return await auth.register(user_data)


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    response: Response,
    auth: AuthServiceDep,
    settings: AppSettingsDep,
):
    user, token = await auth.login(credentials.username, credentials.password)

    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        path="/",
    )
    return LoginResponse(user=user, session_id=token)


@router.get("/me", response_model=UserRead)
async def me(user: CurrentUserDep):
    return user


@router.post("/logout")
async def logout(
    _: CurrentUserDep,
    token: SessionTokenDep,
    response: Response,
    auth: AuthServiceDep,
    settings: AppSettingsDep,
):
    await auth.logout(token)

    response.delete_cookie(
        SESSION_COOKIE,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        path="/",
    )
    return {"message": "Logged out successfully"}
