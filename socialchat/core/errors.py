from contextlib import contextmanager

from pymongo.errors import PyMongoError


class ChatError(Exception):
    """Base class for errors reported to callers of the chat subsystem."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(ChatError):
    status_code = 401
    code = "authentication_failed"


class ForbiddenError(ChatError):
    status_code = 403
    code = "forbidden"


class NotFoundError(ChatError):
    status_code = 404
    code = "not_found"


class StorageError(ChatError):
    status_code = 503
    code = "storage_unavailable"


class DeliveryError(ChatError):
    # Logged by the orchestrator, never rendered to a caller.
    code = "delivery_failed"


@contextmanager
def storage_errors(operation: str):
    try:
        yield
    except PyMongoError as exc:
        raise StorageError(f"{operation} failed: {exc}") from exc
