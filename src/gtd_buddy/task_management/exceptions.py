"""Custom exceptions for the GTD tool server."""

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    """A single violated field constraint."""

    field: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "reason": self.reason}


class GTDBuddyError(Exception):
    """Base exception for GTD tool server errors."""

    code = "error"


class ValidationError(GTDBuddyError):
    """Exception raised when tool input violates its schema."""

    code = "validation_error"

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.reason}" for e in self.errors)
        super().__init__(f"Invalid input ({summary})")


class NotFoundError(GTDBuddyError):
    """Exception raised when a referenced task, context or session is not found."""

    code = "not_found"


class OwnershipError(NotFoundError):
    """
    Exception raised when an entity belongs to another identity.

    Reports the same code and message as NotFoundError so callers cannot
    discover the existence of other users' data.
    """

    pass


class ConflictError(GTDBuddyError):
    """Exception raised when a write would create a duplicate."""

    code = "conflict"


class StoreError(GTDBuddyError):
    """Base exception for document store failures."""

    code = "store_error"


class StoreTransientError(StoreError):
    """Exception raised for retriable store failures (timeouts, lock contention)."""

    code = "store_unavailable"


class DatabaseError(StoreError):
    """Exception raised for non-retriable database errors."""

    pass


class ConfigurationError(GTDBuddyError):
    """Exception raised when required process configuration is missing."""

    code = "configuration_error"


class AuthenticationError(GTDBuddyError):
    """Exception raised when a bearer credential cannot be verified."""

    code = "unauthorized"


class SessionClosedError(GTDBuddyError):
    """Exception raised when a message targets a session that has been closed."""

    code = "session_closed"
