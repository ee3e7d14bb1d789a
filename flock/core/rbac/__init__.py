"""RBAC (Role-Based Access Control) module for flock.

This module defines the permission model, system roles, role storage,
permission resolution and the authorization gate.
"""

from .permissions import Permission, Resource, Action, PERMISSION_DEFINITIONS
from .models import Role, RoleAssignment, User
from .store import RoleStore
from .resolver import PermissionResolver, ScopedResolver, PermissionGrant
from .checker import AuthorizationGate, filter_sensitive_fields, require_permission

__all__ = [
    "Permission",
    "Resource",
    "Action",
    "PERMISSION_DEFINITIONS",
    "Role",
    "RoleAssignment",
    "User",
    "RoleStore",
    "PermissionResolver",
    "ScopedResolver",
    "PermissionGrant",
    "AuthorizationGate",
    "filter_sensitive_fields",
    "require_permission",
]
