"""Role management API endpoints."""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from flock.api.deps import PermissionDependency, get_current_user_id, get_role_store
from flock.core.rbac import RoleStore
from flock.core.rbac.permissions import get_all_permissions, get_permission_catalog

router = APIRouter(prefix="/roles", tags=["roles"])

manage_roles = PermissionDependency("roles:manage")


# Schemas
class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    permissions: List[str] = Field(default_factory=list)
    description: str = ""


class RoleUpdate(BaseModel):
    # Unknown keys are passed through so the store can reject them by name
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    permissions: Optional[List[str]] = None


class RoleResponse(BaseModel):
    id: str
    name: str
    description: str
    permissions: List[str]
    is_system_role: bool
    status: str
    created_at: str
    updated_at: str


class PermissionGroup(BaseModel):
    group: str
    permissions: List[str]


class PermissionCatalog(BaseModel):
    permissions: List[str]
    groups: List[PermissionGroup]


# Endpoints
@router.get("", response_model=List[RoleResponse])
def list_roles(
    include_deleted: bool = Query(False, description="Include soft-deleted roles"),
    store: RoleStore = Depends(get_role_store),
    user_id: str = Depends(manage_roles),
):
    """List all roles."""
    return [r.to_dict() for r in store.list(include_deleted=include_deleted)]


@router.get("/permissions", response_model=PermissionCatalog)
def list_all_permissions(user_id: str = Depends(get_current_user_id)):
    """List every permission that can be granted, grouped for display."""
    return {"permissions": get_all_permissions(), "groups": get_permission_catalog()}


@router.get("/{role_id}", response_model=RoleResponse)
def get_role(
    role_id: str,
    store: RoleStore = Depends(get_role_store),
    user_id: str = Depends(manage_roles),
):
    """Get a specific role by ID."""
    return store.get(role_id).to_dict()


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
def create_role(
    role_data: RoleCreate,
    store: RoleStore = Depends(get_role_store),
    user_id: str = Depends(manage_roles),
):
    """Create a new custom role."""
    role = store.create(role_data.name, role_data.permissions, role_data.description)
    return role.to_dict()


@router.patch("/{role_id}", response_model=RoleResponse)
def update_role(
    role_id: str,
    role_data: RoleUpdate,
    store: RoleStore = Depends(get_role_store),
    user_id: str = Depends(manage_roles),
):
    """Update a role. System roles only accept permission changes."""
    patch = role_data.model_dump(exclude_unset=True)
    return store.update(role_id, patch).to_dict()


@router.post("/{role_id}/enable", response_model=RoleResponse)
def enable_role(
    role_id: str,
    store: RoleStore = Depends(get_role_store),
    user_id: str = Depends(manage_roles),
):
    return store.set_enabled(role_id, True).to_dict()


@router.post("/{role_id}/disable", response_model=RoleResponse)
def disable_role(
    role_id: str,
    store: RoleStore = Depends(get_role_store),
    user_id: str = Depends(manage_roles),
):
    return store.set_enabled(role_id, False).to_dict()


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(
    role_id: str,
    store: RoleStore = Depends(get_role_store),
    user_id: str = Depends(manage_roles),
) -> None:
    """Delete a custom role that nothing references."""
    store.delete(role_id)


@router.get("/{role_id}/assignments")
def list_role_assignments(
    role_id: str,
    include_revoked: bool = Query(False),
    store: RoleStore = Depends(get_role_store),
    user_id: str = Depends(manage_roles),
) -> List[Dict[str, str]]:
    """List the users a role is assigned to."""
    role = store.get(role_id)
    return [a.to_dict() for a in store.assignments_for_role(role.id, include_revoked=include_revoked)]
