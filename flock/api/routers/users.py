"""User role assignment and effective permission endpoints."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from flock.api.deps import PermissionDependency, get_current_user_id, get_gate, get_role_store
from flock.core.errors import NotFoundError, PermissionDeniedError
from flock.core.rbac import AuthorizationGate, RoleStore

router = APIRouter(prefix="/users", tags=["users"])

manage_roles = PermissionDependency("roles:manage")


class AssignRoleRequest(BaseModel):
    role_id: str


class UserAccessUpdate(BaseModel):
    role: Optional[str] = None
    permissions: Optional[List[str]] = None
    status: Optional[str] = None


def _assignment_view(store: RoleStore, assignment) -> Dict[str, Any]:
    data = assignment.to_dict()
    try:
        data["role_name"] = store.get(assignment.role_id).name
    except NotFoundError:
        data["role_name"] = None
    return data


@router.get("/{user_id}/permissions")
def get_user_permissions(
    user_id: str,
    current_user_id: str = Depends(get_current_user_id),
    gate: AuthorizationGate = Depends(get_gate),
):
    """Effective permissions of a user and where each one comes from.

    Users may always read their own; reading anyone else's needs roles:manage.
    """
    if current_user_id != user_id and not gate.can(current_user_id, "roles:manage"):
        raise PermissionDeniedError(current_user_id, "roles:manage")
    return gate.resolver.explain(user_id).to_dict()


@router.get("/{user_id}/roles")
def list_user_roles(
    user_id: str,
    include_revoked: bool = Query(False),
    store: RoleStore = Depends(get_role_store),
    current_user_id: str = Depends(manage_roles),
) -> List[Dict[str, Any]]:
    """List the role assignments of a user."""
    store.get_user(user_id)
    return [
        _assignment_view(store, a)
        for a in store.assignments_for_user(user_id, include_revoked=include_revoked)
    ]


@router.post("/{user_id}/roles", status_code=status.HTTP_201_CREATED)
def assign_role(
    user_id: str,
    body: AssignRoleRequest,
    store: RoleStore = Depends(get_role_store),
    current_user_id: str = Depends(manage_roles),
) -> Dict[str, Any]:
    """Assign a role to a user."""
    assignment = store.assign(user_id, body.role_id, assigned_by=current_user_id)
    return _assignment_view(store, assignment)


@router.delete("/{user_id}/roles/{role_id}")
def revoke_role(
    user_id: str,
    role_id: str,
    store: RoleStore = Depends(get_role_store),
    current_user_id: str = Depends(manage_roles),
) -> Dict[str, int]:
    """Revoke a role from a user."""
    store.get_user(user_id)
    return {"revoked": store.revoke(user_id, role_id, revoked_by=current_user_id)}


@router.patch("/{user_id}/access")
def update_user_access(
    user_id: str,
    body: UserAccessUpdate,
    store: RoleStore = Depends(get_role_store),
    current_user_id: str = Depends(manage_roles),
) -> Dict[str, Any]:
    """Change a user's primary role, permission override or status."""
    user = store.update_user_access(
        user_id,
        role_name=body.role,
        permissions_override=body.permissions,
        status=body.status,
    )
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role_name,
        "permissions": (
            sorted(str(p) for p in user.permissions_override)
            if user.permissions_override is not None else None
        ),
        "status": user.status,
    }
