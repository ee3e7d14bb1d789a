"""Role and role-assignment persistence.

RoleStore is a thin layer over the Roles, Role_Assignments and Users
tables. It owns the rules that keep role data consistent:

- exactly one non-deleted role per name (case-insensitive)
- system roles keep their name, description and flags; only their
  permission set is editable
- a role still referenced by an active assignment or by a user's legacy
  primary role cannot be deleted
- assignments are never edited, only revoked, so the audit trail stays
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

from flock.common.logger import get_logger
from flock.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SystemRoleImmutableError,
)
from flock.store.base import Table, TableService, utc_now_iso
from .models import (
    AssignmentStatus,
    Role,
    RoleAssignment,
    RoleStatus,
    User,
    UserStatus,
    serialize_permissions,
)
from .permissions import PermissionLike, parse_permissions

logger = get_logger("rbac.store")

# Fields callers may patch through update()
EDITABLE_FIELDS = frozenset({"name", "description", "permissions"})
# Fields that never change through update(), on any role
FROZEN_FIELDS = frozenset({"id", "is_system_role", "status", "created_at", "updated_at"})
# The only field a system role accepts in a patch
SYSTEM_EDITABLE_FIELDS = frozenset({"permissions"})

MAX_ROLE_NAME_LENGTH = 100


def _normalize_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValueError("Role name is required")
    name = name.strip()
    if len(name) > MAX_ROLE_NAME_LENGTH:
        raise ValueError(f"Role name longer than {MAX_ROLE_NAME_LENGTH} characters")
    return name


class RoleStore:
    """CRUD for roles and role assignments over a TableService."""

    def __init__(self, tables: TableService):
        """
        Initialize the store.

        Args:
            tables: Record store used for every read and write
        """
        self.tables = tables

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def list(self, *, include_deleted: bool = False) -> List[Role]:
        """List roles sorted by name."""
        roles = [Role.from_row(row) for row in self.tables.list(Table.ROLES)]
        if not include_deleted:
            roles = [r for r in roles if r.status != RoleStatus.DELETED]
        return sorted(roles, key=lambda r: (r.name.lower(), r.id))

    def get(self, role_id: str) -> Role:
        """Get a role by id.

        Raises:
            NotFoundError: If the role doesn't exist or was deleted
        """
        role = Role.from_row(self.tables.get(Table.ROLES, role_id))
        if role.status == RoleStatus.DELETED:
            raise NotFoundError(Table.ROLES.value, role_id)
        return role

    def get_by_name(self, name: str) -> Optional[Role]:
        """Find a non-deleted role by name, ignoring case."""
        wanted = (name or "").strip().lower()
        if not wanted:
            return None
        for role in self.list():
            if role.name.lower() == wanted:
                return role
        return None

    def create(
        self,
        name: str,
        permissions: Iterable[PermissionLike] = (),
        description: str = "",
        *,
        is_system_role: bool = False,
    ) -> Role:
        """Create a role.

        Raises:
            ValueError: If the name is empty or too long
            InvalidPermissionError: If a permission is not in the matrix
            ConflictError: If a role with the same name exists
        """
        name = _normalize_name(name)
        granted = parse_permissions(permissions)
        if self.get_by_name(name) is not None:
            raise ConflictError(f"Role '{name}' already exists")

        now = utc_now_iso()
        role_id = self.tables.append(Table.ROLES, {
            "name": name,
            "description": description or "",
            "permissions": serialize_permissions(granted),
            "is_system_role": "true" if is_system_role else "false",
            "status": RoleStatus.ACTIVE.value,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Created role '{name}' ({role_id})")
        return self.get(role_id)

    def update(self, role_id: str, patch: Mapping[str, Any]) -> Role:
        """Apply a patch to a role.

        Raises:
            NotFoundError: If the role doesn't exist
            SystemRoleImmutableError: If a system role patch touches anything
                but permissions
            ForbiddenError: If the patch touches a frozen field
            ConflictError: If a rename collides with another role
            ValueError: If the patch has unknown fields
        """
        role = self.get(role_id)
        keys = set(patch)

        if role.is_system_role and keys - SYSTEM_EDITABLE_FIELDS:
            raise SystemRoleImmutableError(role.name, keys - SYSTEM_EDITABLE_FIELDS)

        frozen = keys & FROZEN_FIELDS
        if frozen:
            raise ForbiddenError(f"Role fields cannot be changed: {', '.join(sorted(frozen))}")

        unknown = keys - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown role fields: {', '.join(sorted(unknown))}")

        changes: Dict[str, Any] = {}
        if "name" in patch:
            name = _normalize_name(patch["name"])
            existing = self.get_by_name(name)
            if existing is not None and existing.id != role.id:
                raise ConflictError(f"Role '{name}' already exists")
            changes["name"] = name
        if "description" in patch:
            changes["description"] = str(patch["description"] or "")
        if "permissions" in patch:
            changes["permissions"] = serialize_permissions(parse_permissions(patch["permissions"] or []))

        if not changes:
            return role

        changes["updated_at"] = utc_now_iso()
        self.tables.update_by_id(Table.ROLES, role.id, changes)
        logger.info(f"Updated role '{role.name}' ({role.id}): {', '.join(sorted(keys))}")
        return self.get(role.id)

    def delete(self, role_id: str) -> None:
        """Soft-delete a role.

        Raises:
            NotFoundError: If the role doesn't exist
            SystemRoleImmutableError: If the role is a system role
            ConflictError: If an active assignment or user still references it
        """
        role = self.get(role_id)
        if role.is_system_role:
            raise SystemRoleImmutableError(role.name)

        assigned = self.assignments_for_role(role.id)
        if assigned:
            raise ConflictError(
                f"Role '{role.name}' is still assigned to {len(assigned)} user(s)"
            )

        holders = [u for u in self._users() if u.is_active and u.role_name.lower() == role.name.lower()]
        if holders:
            raise ConflictError(
                f"Role '{role.name}' is the primary role of {len(holders)} user(s)"
            )

        self.tables.update_by_id(Table.ROLES, role.id, {
            "status": RoleStatus.DELETED.value,
            "updated_at": utc_now_iso(),
        })
        logger.info(f"Deleted role '{role.name}' ({role.id})")

    def set_enabled(self, role_id: str, enabled: bool) -> Role:
        """Enable or disable a custom role. Disabled roles grant nothing."""
        role = self.get(role_id)
        if role.is_system_role:
            raise SystemRoleImmutableError(role.name, ["status"])
        status = RoleStatus.ACTIVE if enabled else RoleStatus.DISABLED
        if role.status != status:
            self.tables.update_by_id(Table.ROLES, role.id, {
                "status": status.value,
                "updated_at": utc_now_iso(),
            })
            logger.info(f"Role '{role.name}' is now {status.value}")
        return self.get(role.id)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def _users(self) -> List[User]:
        return [User.from_row(row) for row in self.tables.list(Table.USERS)]

    def get_user(self, user_id: str) -> User:
        """Get a user by id.

        Raises:
            NotFoundError: If the user doesn't exist
        """
        return User.from_row(self.tables.get(Table.USERS, user_id))

    def update_user_access(
        self,
        user_id: str,
        *,
        role_name: Optional[str] = None,
        permissions_override: Optional[Iterable[PermissionLike]] = None,
        status: Optional[str] = None,
    ) -> User:
        """Change a user's legacy primary role, override list or status.

        Raises:
            NotFoundError: If the user or named role doesn't exist
            InvalidPermissionError: If the override has unknown permissions
            ValueError: If status is not a known user status
        """
        self.get_user(user_id)
        changes: Dict[str, Any] = {}

        if role_name is not None:
            role = self.get_by_name(role_name)
            if role is None:
                raise NotFoundError(Table.ROLES.value, role_name)
            changes["role"] = role.name
        if permissions_override is not None:
            changes["permissions"] = serialize_permissions(parse_permissions(permissions_override))
        if status is not None:
            changes["status"] = UserStatus(status.strip().lower()).value

        if changes:
            self.tables.update_by_id(Table.USERS, user_id, changes)
            logger.info(f"Updated access for user {user_id}: {', '.join(sorted(changes))}")
        return self.get_user(user_id)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def _assignments(self) -> List[RoleAssignment]:
        return [RoleAssignment.from_row(row) for row in self.tables.list(Table.ROLE_ASSIGNMENTS)]

    def assignments_for_user(self, user_id: str, *, include_revoked: bool = False) -> List[RoleAssignment]:
        """Assignments held by a user, oldest first."""
        found = [
            a for a in self._assignments()
            if a.user_id == str(user_id) and (include_revoked or a.is_active)
        ]
        return sorted(found, key=lambda a: (a.assigned_at, a.id))

    def assignments_for_role(self, role_id: str, *, include_revoked: bool = False) -> List[RoleAssignment]:
        """Assignments that reference a role, oldest first."""
        found = [
            a for a in self._assignments()
            if a.role_id == str(role_id) and (include_revoked or a.is_active)
        ]
        return sorted(found, key=lambda a: (a.assigned_at, a.id))

    def assign(self, user_id: str, role_id: str, assigned_by: str) -> RoleAssignment:
        """Assign a role to a user.

        Assigning a pair that is already active returns the existing
        assignment.

        Raises:
            NotFoundError: If the user or role doesn't exist
            ConflictError: If the role is disabled
        """
        self.get_user(user_id)
        role = self.get(role_id)
        if not role.is_active:
            raise ConflictError(f"Role '{role.name}' is {role.status.value}")

        for existing in self.assignments_for_user(user_id):
            if existing.role_id == role.id:
                return existing

        assignment_id = self.tables.append(Table.ROLE_ASSIGNMENTS, {
            "user_id": str(user_id),
            "role_id": role.id,
            "assigned_by": str(assigned_by or ""),
            "assigned_at": utc_now_iso(),
            "status": AssignmentStatus.ACTIVE.value,
            "revoked_by": "",
            "revoked_at": "",
        })
        logger.info(f"Assigned role '{role.name}' to user {user_id} (by {assigned_by})")
        return RoleAssignment.from_row(self.tables.get(Table.ROLE_ASSIGNMENTS, assignment_id))

    def revoke(self, user_id: str, role_id: str, revoked_by: str) -> int:
        """Revoke every active assignment of a role to a user.

        Returns:
            Number of assignments revoked (0 when none were active)
        """
        revoked = 0
        now = utc_now_iso()
        for assignment in self.assignments_for_user(user_id):
            if assignment.role_id != str(role_id):
                continue
            self.tables.update_by_id(Table.ROLE_ASSIGNMENTS, assignment.id, {
                "status": AssignmentStatus.REVOKED.value,
                "revoked_by": str(revoked_by or ""),
                "revoked_at": now,
            })
            revoked += 1
        if revoked:
            logger.info(f"Revoked role {role_id} from user {user_id} (by {revoked_by})")
        return revoked
