"""Permission model for flock RBAC.

Defines all resources, actions, and the permission matrix.
Permissions are a closed set: only (resource, action) pairs present in the
matrix exist, and parsing rejects anything else.

Permission string format: "resource:action"
Examples:
  - members:read
  - members:sensitive
  - events:checkin
  - roles:manage
"""

import re
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, NamedTuple, Tuple, Union

from flock.core.errors import InvalidPermissionError


PERMISSION_PATTERN = re.compile(r"^[a-z_]+:[a-z_]+$")


class Resource(str, Enum):
    """Resources that can be protected by permissions."""

    # People
    MEMBERS = "members"           # Member records
    VOLUNTEERS = "volunteers"     # Volunteer rosters
    CELLGROUPS = "cellgroups"     # Small groups

    # Giving
    OFFERINGS = "offerings"       # Individual offerings
    FINANCE = "finance"           # Ledger and reports

    # Programs
    EVENTS = "events"
    COURSES = "courses"
    MEDIA = "media"               # Sermons, photos, uploads
    SURVEYS = "surveys"

    # Administration
    SETTINGS = "settings"         # Site and system settings
    ROLES = "roles"               # Role definitions and assignments
    USERS = "users"               # Back-office accounts


class Action(str, Enum):
    """Actions that can be performed on resources."""

    # Standard CRUD actions
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    # Specialized actions
    SENSITIVE = "sensitive"       # View protected fields (health notes)
    CHECKIN = "checkin"           # Check attendees in at an event
    MANAGE = "manage"             # Manage roles and assignments
    INVITE = "invite"             # Create back-office accounts


class Permission(NamedTuple):
    """A permission is a combination of resource and action."""
    resource: Resource
    action: Action

    def __str__(self) -> str:
        return f"{self.resource.value}:{self.action.value}"

    @classmethod
    def from_string(cls, perm_str: str) -> "Permission":
        """Parse and validate a permission string like 'members:read'.

        Raises:
            InvalidPermissionError: If the string is malformed or not in the matrix
        """
        if not isinstance(perm_str, str) or not PERMISSION_PATTERN.match(perm_str):
            raise InvalidPermissionError(str(perm_str), "expected resource:action")
        resource_str, action_str = perm_str.split(":")
        try:
            perm = cls(Resource(resource_str), Action(action_str))
        except ValueError:
            raise InvalidPermissionError(perm_str) from None
        if perm.action not in PERMISSION_MATRIX[perm.resource]:
            raise InvalidPermissionError(perm_str, f"{resource_str} does not support {action_str}")
        return perm


_CRUD = (Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE)

# Permission definitions matrix
# Maps each resource to its valid actions
PERMISSION_MATRIX: Dict[Resource, FrozenSet[Action]] = {
    Resource.MEMBERS: frozenset([*_CRUD, Action.SENSITIVE]),
    Resource.OFFERINGS: frozenset(_CRUD),
    Resource.EVENTS: frozenset([*_CRUD, Action.CHECKIN]),
    Resource.COURSES: frozenset(_CRUD),
    Resource.CELLGROUPS: frozenset(_CRUD),
    Resource.VOLUNTEERS: frozenset(_CRUD),
    Resource.FINANCE: frozenset(_CRUD),
    Resource.MEDIA: frozenset(_CRUD),
    Resource.SURVEYS: frozenset(_CRUD),
    Resource.SETTINGS: frozenset([Action.READ, Action.UPDATE]),
    Resource.ROLES: frozenset([Action.MANAGE]),
    Resource.USERS: frozenset([Action.INVITE]),
}


def _generate_permission_definitions() -> Dict[str, Permission]:
    """Generate all valid permission combinations from the matrix."""
    permissions = {}
    for resource, actions in PERMISSION_MATRIX.items():
        for action in actions:
            perm = Permission(resource, action)
            permissions[str(perm)] = perm
    return permissions


# All valid permissions as a dictionary: "resource:action" -> Permission
PERMISSION_DEFINITIONS = _generate_permission_definitions()


# Catalogue groups shown on the access-control page
PERMISSION_GROUPS: List[Tuple[str, List[Resource]]] = [
    ("People", [Resource.MEMBERS, Resource.CELLGROUPS, Resource.VOLUNTEERS]),
    ("Giving", [Resource.OFFERINGS, Resource.FINANCE]),
    ("Programs", [Resource.EVENTS, Resource.COURSES]),
    ("Media & surveys", [Resource.MEDIA, Resource.SURVEYS]),
    ("System", [Resource.SETTINGS, Resource.ROLES, Resource.USERS]),
]


PermissionLike = Union[str, Permission]


def to_permission(value: PermissionLike) -> Permission:
    """Coerce a Permission or permission string into a validated Permission."""
    if isinstance(value, Permission):
        if value.action not in PERMISSION_MATRIX.get(value.resource, frozenset()):
            raise InvalidPermissionError(str(value), "not in permission matrix")
        return value
    return Permission.from_string(value)


def parse_permissions(values: Iterable[PermissionLike]) -> FrozenSet[Permission]:
    """Validate a collection of permissions, rejecting the first unknown token."""
    return frozenset(to_permission(v) for v in values)


def is_valid_permission(perm_str: str) -> bool:
    """Check if a permission string is valid."""
    return perm_str in PERMISSION_DEFINITIONS


def get_permissions_for_resource(resource: Resource) -> List[str]:
    """Get all valid permission strings for a resource."""
    return sorted(
        str(Permission(resource, action))
        for action in PERMISSION_MATRIX.get(resource, set())
    )


def get_all_permissions() -> List[str]:
    """Get all valid permission strings."""
    return sorted(PERMISSION_DEFINITIONS.keys())


def get_permission_catalog() -> List[Dict[str, object]]:
    """Group permissions for display, in matrix order."""
    return [
        {
            "group": group,
            "permissions": [p for r in resources for p in get_permissions_for_resource(r)],
        }
        for group, resources in PERMISSION_GROUPS
    ]
