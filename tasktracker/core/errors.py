class AppError(Exception):
    """Base class for errors whose message is safe to show to the client."""

    status_code = 400
    default_message = "Bad request"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Authentication required"


class AccessDeniedError(AppError):
    status_code = 403
    default_message = "Access denied"


class ConflictError(AppError):
    status_code = 409
    default_message = "Already exists"


class SessionRevokeError(Exception):
    """Neither the cache nor the database accepted the session removal."""
