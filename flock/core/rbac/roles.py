"""System role definitions for flock.

Defines the 6 seeded roles with their default permission sets:
1. admin - Everything, including role management and invitations
2. pastor - Pastoral care, sensitive member data, finance read/create
3. leader - Events, courses and small groups
4. staff - Office work: members, offerings, events, volunteers
5. volunteer - Check-in duty
6. readonly - Browse members, events and media

System roles cannot be renamed or deleted. Their permission sets are
only defaults: an admin may edit them after seeding.
"""

from typing import Dict, List
from .permissions import PERMISSION_MATRIX, Resource, Action, Permission


def _build_permissions(*perms: tuple) -> List[str]:
    """Build permission strings from (Resource, Action) tuples."""
    return [str(Permission(r, a)) for r, a in perms]


def _crud(resource: Resource, *actions: Action) -> List[tuple]:
    return [(resource, action) for action in actions]


_R, _C, _U, _D = Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE


# Admin: every permission in the matrix, spelled out (no wildcards)
ADMIN_PERMISSIONS = sorted(
    str(Permission(resource, action))
    for resource, actions in PERMISSION_MATRIX.items()
    for action in actions
)

PASTOR_PERMISSIONS = _build_permissions(
    *_crud(Resource.MEMBERS, _R, _C, _U, Action.SENSITIVE),
    *_crud(Resource.OFFERINGS, _R, _C),
    *_crud(Resource.EVENTS, _R, _C, _U),
    *_crud(Resource.COURSES, _R, _C, _U),
    *_crud(Resource.CELLGROUPS, _R, _C, _U),
    *_crud(Resource.VOLUNTEERS, _R, _C, _U),
    *_crud(Resource.FINANCE, _R, _C),
    *_crud(Resource.MEDIA, _R, _C, _U),
    *_crud(Resource.SURVEYS, _R, _C, _U),
    (Resource.SETTINGS, _R),
)

LEADER_PERMISSIONS = _build_permissions(
    *_crud(Resource.MEMBERS, _R, _U),
    *_crud(Resource.EVENTS, _R, _C, _U, _D),
    *_crud(Resource.COURSES, _R, _C, _U),
    *_crud(Resource.CELLGROUPS, _R, _C, _U),
    *_crud(Resource.VOLUNTEERS, _R, _C, _U),
    *_crud(Resource.MEDIA, _R, _C, _U),
    *_crud(Resource.SURVEYS, _R, _C, _U),
)

STAFF_PERMISSIONS = _build_permissions(
    *_crud(Resource.MEMBERS, _R, _C, _U),
    *_crud(Resource.OFFERINGS, _R, _C),
    *_crud(Resource.EVENTS, _R, _C, _U),
    *_crud(Resource.COURSES, _R, _C, _U),
    *_crud(Resource.VOLUNTEERS, _R, _C, _U),
    *_crud(Resource.MEDIA, _R, _C, _U),
    *_crud(Resource.SURVEYS, _R, _C, _U),
)

VOLUNTEER_PERMISSIONS = _build_permissions(
    (Resource.MEMBERS, _R),
    (Resource.EVENTS, _R),
    (Resource.EVENTS, Action.CHECKIN),
    (Resource.MEDIA, _R),
)

READONLY_PERMISSIONS = _build_permissions(
    (Resource.MEMBERS, _R),
    (Resource.EVENTS, _R),
    (Resource.MEDIA, _R),
)


# System roles, keyed by their immutable name
SYSTEM_ROLES: Dict[str, dict] = {
    "admin": {
        "description": "Full access, including roles and back-office accounts",
        "permissions": ADMIN_PERMISSIONS,
    },
    "pastor": {
        "description": "Pastoral staff with access to sensitive member data",
        "permissions": PASTOR_PERMISSIONS,
    },
    "leader": {
        "description": "Ministry and small group leaders",
        "permissions": LEADER_PERMISSIONS,
    },
    "staff": {
        "description": "Office staff handling members, giving and events",
        "permissions": STAFF_PERMISSIONS,
    },
    "volunteer": {
        "description": "Event check-in volunteers",
        "permissions": VOLUNTEER_PERMISSIONS,
    },
    "readonly": {
        "description": "Read-only access to members, events and media",
        "permissions": READONLY_PERMISSIONS,
    },
}

SYSTEM_ROLE_NAMES = frozenset(SYSTEM_ROLES)


def get_system_role_permissions(role_name: str) -> List[str]:
    """Get the default permissions list for a system role."""
    role = SYSTEM_ROLES.get(role_name)
    if not role:
        raise ValueError(f"Unknown system role: {role_name}")
    return list(role["permissions"])


def get_all_system_roles() -> Dict[str, dict]:
    """Get all system role definitions."""
    return SYSTEM_ROLES.copy()
