"""Effective permission resolution.

A user's effective permissions are the union of three sources:

1. the legacy primary role named on the user row
2. the role of every active assignment
3. the per-user override list

Each source only adds. A source that cannot be resolved (unknown role
name, deleted or disabled role, malformed override) contributes nothing,
so the result is the same whichever order the sources are read in.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from flock.common.logger import get_logger
from flock.core.errors import NotFoundError
from .models import Role
from .permissions import Permission
from .store import RoleStore

logger = get_logger("rbac.resolver")


@dataclass
class PermissionGrant:
    """Effective permissions with the sources that grant each one."""

    user_id: str
    permissions: FrozenSet[Permission] = frozenset()
    sources: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "user_id": self.user_id,
            "permissions": sorted(str(p) for p in self.permissions),
            "sources": {k: sorted(v) for k, v in sorted(self.sources.items())},
        }


class PermissionResolver:
    """Computes a user's effective permission set from current store state.

    Nothing is cached: every call re-reads the user, roles and assignments.
    Wrap in a ScopedResolver to memoize within one request.
    """

    def __init__(self, roles: RoleStore):
        self.roles = roles

    def resolve(self, user_id: str) -> FrozenSet[Permission]:
        """Return the effective permission set of a user.

        Raises:
            NotFoundError: If the user doesn't exist
            UnavailableError: If the record store cannot be read
        """
        return self.explain(user_id).permissions

    def explain(self, user_id: str) -> PermissionGrant:
        """Resolve permissions and record which source granted each one."""
        user = self.roles.get_user(user_id)
        grant = PermissionGrant(user_id=user.id)
        if not user.is_active:
            logger.info(f"User {user.id} is {user.status or 'without status'}; no permissions")
            return grant

        contributions: Dict[str, FrozenSet[Permission]] = {}

        if user.role_name:
            role = self.roles.get_by_name(user.role_name)
            if role is None:
                logger.warning(f"User {user.id} has unknown primary role '{user.role_name}'")
            elif role.is_active:
                contributions[f"role:{role.name}"] = role.permissions

        for assignment in self.roles.assignments_for_user(user.id):
            role = self._assigned_role(assignment.role_id)
            if role is not None and role.is_active:
                contributions[f"assignment:{role.name}"] = role.permissions

        if user.permissions_override:
            contributions["override"] = user.permissions_override

        sources: Dict[str, List[str]] = {}
        for source, permissions in contributions.items():
            for perm in permissions:
                sources.setdefault(str(perm), []).append(source)

        grant.permissions = frozenset().union(*contributions.values())
        grant.sources = sources
        return grant

    def _assigned_role(self, role_id: str) -> Optional[Role]:
        try:
            return self.roles.get(role_id)
        except NotFoundError:
            logger.warning(f"Assignment references missing role {role_id}")
            return None


class ScopedResolver:
    """Memoizes resolve() for the lifetime of one request.

    Create one per request and drop it afterwards. Call invalidate()
    after mutating roles, assignments or overrides inside the request.
    """

    def __init__(self, resolver: PermissionResolver):
        self.resolver = resolver
        self._memo: Dict[str, FrozenSet[Permission]] = {}

    @property
    def roles(self) -> RoleStore:
        return self.resolver.roles

    def resolve(self, user_id: str) -> FrozenSet[Permission]:
        key = str(user_id)
        if key not in self._memo:
            self._memo[key] = self.resolver.resolve(key)
        return self._memo[key]

    def explain(self, user_id: str) -> PermissionGrant:
        return self.resolver.explain(user_id)

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Forget one user's memoized permissions, or everyone's."""
        if user_id is None:
            self._memo.clear()
        else:
            self._memo.pop(str(user_id), None)
