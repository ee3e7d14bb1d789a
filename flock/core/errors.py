"""Error taxonomy shared by the RBAC and tagging components.

NotFound, Forbidden, Conflict and Unavailable map onto the four ways an
operation against the record store can fail. The HTTP layer translates
them into status codes; nothing below the API layer knows about HTTP.
"""

from typing import Iterable, Optional


class FlockError(Exception):
    """Base class for domain errors."""


class NotFoundError(FlockError):
    """Raised when a referenced user, role or record does not exist."""

    def __init__(self, table: str, record_id: str):
        super().__init__(f"{table} record {record_id!r} not found")
        self.table = table
        self.record_id = record_id


class ForbiddenError(FlockError):
    """Raised when an operation is not allowed. Never retried."""


class PermissionDeniedError(ForbiddenError):
    """Raised when a user lacks the permission an operation requires."""

    def __init__(self, user_id: str, required_permission: str):
        super().__init__(f"Permission denied: requires {required_permission}")
        self.user_id = user_id
        self.required_permission = required_permission


class SystemRoleImmutableError(ForbiddenError):
    """Raised when a system role's identity or flags would change."""

    def __init__(self, role_name: str, fields: Iterable[str] = ()):
        self.role_name = role_name
        self.fields = tuple(sorted(fields))
        if self.fields:
            message = (
                f"System role '{role_name}' cannot change: {', '.join(self.fields)}"
            )
        else:
            message = f"System role '{role_name}' cannot be deleted"
        super().__init__(message)


class ConflictError(FlockError):
    """Raised when an operation would violate a uniqueness or reference rule."""


class UnavailableError(FlockError):
    """Raised when the external record store times out or fails.

    Callers retry with backoff. An authorization check that hits this
    error must propagate it instead of answering yes or no.
    """

    retryable = True

    def __init__(self, message: str, *, table: Optional[str] = None):
        super().__init__(message)
        self.table = table


class StoreRequestError(FlockError):
    """Raised when the record store rejects a request outright. Never retried."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SchemaError(FlockError, ValueError):
    """Raised when a write names columns the stored table does not have."""

    def __init__(self, table: str, columns: Iterable[str]):
        self.table = table
        self.columns = tuple(sorted(columns))
        super().__init__(f"{table} has no column(s): {', '.join(self.columns)}")


class InvalidPermissionError(ValueError):
    """Raised when a permission token is not part of the permission matrix."""

    def __init__(self, token: str, reason: str = "unknown permission"):
        super().__init__(f"Invalid permission {token!r}: {reason}")
        self.token = token
