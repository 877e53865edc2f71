import logging

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy.exc import IntegrityError

from tasktracker.core.errors import AuthenticationError, ConflictError
from tasktracker.models import UserCreate, UserRead
from tasktracker.services.session_service import SessionManager
from tasktracker.services.user_service import UserService

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"


class AuthService:
    """
    Credential checks on top of UserService, session handling delegated to
    SessionManager.
    """

    def __init__(
        self,
        users: UserService,
        session_manager: SessionManager,
        hasher: PasswordHasher | None = None,
    ):
        self.users = users
        self.session_manager = session_manager
        self.hasher = hasher or PasswordHasher()

    def hash_password(self, password: str) -> str:
        return self.hasher.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Constant-time comparison; any malformed hash counts as a mismatch."""
        try:
            return self.hasher.verify(password_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    async def register(self, user_data: UserCreate) -> UserRead:
        if await self.users.find_by_username(user_data.username):
            raise ConflictError("Username already exists")
        if await self.users.find_by_email(user_data.email):
            raise ConflictError("Email already exists")

        try:
            user = await self.users.create_user(
                username=user_data.username,
                email=user_data.email,
                password_hash=self.hash_password(user_data.password),
            )
        except IntegrityError:
            # Lost a race with a concurrent registration
            raise ConflictError("Username or email already exists")

        logger.info(f"Registered user {user.id}")
        return UserRead.model_validate(user)

    async def login(self, username: str, password: str) -> tuple[UserRead, str]:
        user = await self.users.find_by_username(username)
        if user is None or not self.verify_password(password, user.password_hash):
            raise AuthenticationError(INVALID_CREDENTIALS)

        token = await self.session_manager.create(user.id)
        return UserRead.model_validate(user), token

    async def authenticate(self, token: str | None) -> UserRead | None:
        """Resolve a session token to its user, or None if it is not valid."""
        user_id = await self.session_manager.validate(token)
        if user_id is None:
            return None

        user = await self.users.get_user(user_id)
        if user is None:
            return None
        return UserRead.model_validate(user)

    async def logout(self, token: str):
        await self.session_manager.revoke(token)
