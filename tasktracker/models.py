from datetime import datetime, timezone

from pydantic import field_validator
from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def _timestamp_column(nullable: bool = False, index: bool = False):
    return Column(DateTime(timezone=True), nullable=nullable, index=index)


def _user_fk_column():
    return Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


# Users


class UserBase(SQLModel):
    username: str = Field(min_length=3, max_length=100)
    email: str = Field(max_length=255)


class User(UserBase, table=True):
    """Database model"""

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(
        sa_column=Column(String(100), unique=True, nullable=False, index=True)
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, nullable=False, index=True)
    )
    password_hash: str = Field(max_length=255)
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_timestamp_column()
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_timestamp_column()
    )


class UserCreate(UserBase):
    """Schema for registering a user"""

    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=6)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("Invalid email address")
        return value.lower()


class UserRead(UserBase):
    """User as returned to clients, never carries the password hash"""

    id: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class LoginRequest(SQLModel):
    username: str
    password: str


class LoginResponse(SQLModel):
    message: str = "Login successful"
    user: UserRead
    session_id: str


# Sessions


class UserSession(SQLModel, table=True):
    """Durable half of a login session. expires_at is fixed at creation."""

    __tablename__ = "sessions"

    id: str = Field(sa_column=Column(String(100), primary_key=True))
    user_id: int = Field(sa_column=_user_fk_column())
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_timestamp_column()
    )
    expires_at: datetime = Field(sa_column=_timestamp_column(index=True))


# Tasks


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None)
    status: str = Field(default="pending", max_length=50)
    priority: int = Field(default=1, ge=1, le=5)
    due_date: datetime | None = Field(default=None)


class Task(TaskBase, table=True):
    """Database model"""

    __tablename__ = "tasks"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=_user_fk_column())
    status: str = Field(default="pending", max_length=50, index=True)
    due_date: datetime | None = Field(
        default=None, sa_column=_timestamp_column(nullable=True, index=True)
    )
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_timestamp_column()
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now, sa_column=_timestamp_column()
    )


class TaskCreate(TaskBase):
    """Schema for creating a task"""

    pass


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional, only sent fields change"""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: str | None = Field(default=None, max_length=50)
    priority: int | None = Field(default=None, ge=1, le=5)
    due_date: datetime | None = None

    @field_validator("title", "status", "priority")
    @classmethod
    def reject_null(cls, value):
        # Omitting these leaves them unchanged; null would violate NOT NULL
        if value is None:
            raise ValueError("May be omitted but cannot be null")
        return value


class TaskRead(TaskBase):
    """Schema for task responses and for the cached copy of a task"""

    id: int
    user_id: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
