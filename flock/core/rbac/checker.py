"""Permission checking for flock.

AuthorizationGate is the single choke point every protected operation
calls before acting. Matching is exact: a permission is granted only if
it appears, verbatim, in the user's resolved set. There are no wildcards.

Checks fail closed. An unknown user is denied. A store outage is raised
as UnavailableError so the caller can retry; it is never turned into an
answer.
"""

from functools import wraps
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Union

from flock.common.logger import get_logger
from flock.core.errors import NotFoundError, PermissionDeniedError
from .permissions import Action, Permission, PermissionLike, Resource, to_permission
from .resolver import PermissionResolver, ScopedResolver

logger = get_logger("rbac.checker")

# Member fields hidden unless members:sensitive is granted
SENSITIVE_FIELDS = ("health_notes", "password_hash")
SENSITIVE_PERMISSION = Permission(Resource.MEMBERS, Action.SENSITIVE)


class AuthorizationGate:
    """Answers "may this user do this?" from freshly resolved permissions."""

    def __init__(self, resolver: Union[PermissionResolver, ScopedResolver]):
        """
        Initialize the gate.

        Args:
            resolver: Resolver to consult; pass a ScopedResolver to memoize
                within a request
        """
        self.resolver = resolver

    def granted(self, user_id: str) -> FrozenSet[Permission]:
        """Effective permissions of a user; empty for an unknown user."""
        try:
            return self.resolver.resolve(user_id)
        except NotFoundError:
            logger.info(f"Denying unknown user {user_id}")
            return frozenset()

    def can(self, user_id: str, permission: PermissionLike) -> bool:
        """Check if a user has a specific permission.

        Raises:
            InvalidPermissionError: If permission is not in the matrix
            UnavailableError: If the record store cannot be read
        """
        perm = to_permission(permission)
        return perm in self.granted(user_id)

    def require(self, user_id: str, permission: PermissionLike) -> None:
        """Raise PermissionDeniedError unless the user has the permission."""
        perm = to_permission(permission)
        if perm not in self.granted(user_id):
            logger.warning(f"User {user_id} denied {perm}")
            raise PermissionDeniedError(str(user_id), str(perm))

    def can_any(self, user_id: str, permissions: Iterable[PermissionLike]) -> bool:
        """Check if user has any of the given permissions."""
        wanted = [to_permission(p) for p in permissions]
        granted = self.granted(user_id)
        return any(p in granted for p in wanted)

    def can_all(self, user_id: str, permissions: Iterable[PermissionLike]) -> bool:
        """Check if user has all of the given permissions."""
        wanted = [to_permission(p) for p in permissions]
        granted = self.granted(user_id)
        return all(p in granted for p in wanted)

    def accessible_resources(self, user_id: str, action: Action) -> List[Resource]:
        """Get list of resources the user can perform the action on."""
        granted = self.granted(user_id)
        return [
            resource for resource in Resource
            if Permission(resource, action) in granted
        ]


def filter_sensitive_fields(
    record: Mapping[str, Any], granted: Iterable[Permission]
) -> Dict[str, Any]:
    """Drop sensitive member fields unless members:sensitive is granted."""
    if SENSITIVE_PERMISSION in set(granted):
        return dict(record)
    return {k: v for k, v in record.items() if k not in SENSITIVE_FIELDS}


def require_permission(permission: PermissionLike):
    """
    Decorator for service functions that take (gate, user_id, ...) first.

    Usage:
        @require_permission("roles:manage")
        def rename_role(gate, user_id, role_id, name):
            ...
    """
    perm = to_permission(permission)

    def decorator(func: Callable):
        @wraps(func)
        def wrapper(gate: AuthorizationGate, user_id: str, *args, **kwargs):
            gate.require(user_id, perm)
            return func(gate, user_id, *args, **kwargs)

        return wrapper
    return decorator
