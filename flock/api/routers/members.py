"""Member record endpoints, as far as access control and tagging reach."""

from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from flock.api.deps import PermissionDependency, get_gate, get_tables, get_tagging_service
from flock.core.rbac import AuthorizationGate, filter_sensitive_fields
from flock.core.rbac.checker import SENSITIVE_FIELDS, SENSITIVE_PERMISSION
from flock.core.tagging import TaggingService
from flock.store import Table, TableService, utc_now_iso
from flock.workers.tag_tasks import enqueue_member_tags

router = APIRouter(prefix="/members", tags=["members"])

read_members = PermissionDependency("members:read")
update_members = PermissionDependency("members:update")

# Columns owned by the tagging service or the store
PROTECTED_FIELDS = frozenset({"id", "tags", "auto_tags", "manual_tags", "created_at", "updated_at"})


class ManualTagsRequest(BaseModel):
    tag_ids: List[str]


@router.get("/{member_id}")
def get_member(
    member_id: str,
    tables: TableService = Depends(get_tables),
    gate: AuthorizationGate = Depends(get_gate),
    user_id: str = Depends(read_members),
) -> Dict[str, Any]:
    """Get a member. Sensitive fields need members:sensitive."""
    record = tables.get(Table.MEMBERS, member_id)
    return filter_sensitive_fields(record, gate.granted(user_id))


@router.patch("/{member_id}")
def update_member(
    member_id: str,
    patch: Dict[str, Any] = Body(...),
    tables: TableService = Depends(get_tables),
    gate: AuthorizationGate = Depends(get_gate),
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    """Update member fields, then re-tag the member."""
    protected = set(patch) & PROTECTED_FIELDS
    if protected:
        raise ValueError(f"Member fields cannot be changed here: {', '.join(sorted(protected))}")
    if set(patch) & set(SENSITIVE_FIELDS):
        gate.require(user_id, SENSITIVE_PERMISSION)

    tables.update_by_id(Table.MEMBERS, member_id, {**patch, "updated_at": utc_now_iso()})
    tagging = enqueue_member_tags(member_id, service)

    record = filter_sensitive_fields(tables.get(Table.MEMBERS, member_id), gate.granted(user_id))
    if tagging is not None:
        record["tagging"] = tagging
    return record


@router.put("/{member_id}/tags")
def set_manual_tags(
    member_id: str,
    body: ManualTagsRequest,
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    """Replace the member's hand-applied tags."""
    return service.set_manual_tags(member_id, body.tag_ids).to_dict()


@router.post("/{member_id}/tags/{tag_id}")
def add_manual_tag(
    member_id: str,
    tag_id: str,
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    return service.add_manual_tag(member_id, tag_id).to_dict()


@router.delete("/{member_id}/tags/{tag_id}")
def remove_manual_tag(
    member_id: str,
    tag_id: str,
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    return service.remove_manual_tag(member_id, tag_id).to_dict()
