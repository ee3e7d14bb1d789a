"""Tag catalogue, tag rule and re-tagging endpoints.

Changing a rule re-tags every member; the work is queued on Celery
unless inline recompute is configured.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from flock.api.deps import (
    PermissionDependency,
    get_tag_store,
    get_tagging_service,
    get_tables,
)
from flock.core.tagging import TaggingService, TagStore
from flock.store import Table, TableService
from flock.workers.tag_tasks import enqueue_recompute

router = APIRouter(prefix="/tags", tags=["tags"])

read_members = PermissionDependency("members:read")
update_members = PermissionDependency("members:update")


# Schemas
class TagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: str = "general"
    color: str = "#3b82f6"
    description: str = ""


class TagUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None


class RuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    tag_id: str
    condition_type: str = "field"
    condition_field: str
    condition_operator: str
    condition_value: str = ""
    priority: int = Field(0, ge=0)
    enabled: bool = True


class RuleUpdate(BaseModel):
    name: Optional[str] = None
    tag_id: Optional[str] = None
    condition_type: Optional[str] = None
    condition_field: Optional[str] = None
    condition_operator: Optional[str] = None
    condition_value: Optional[str] = None
    priority: Optional[int] = Field(None, ge=0)


def _recompute(response: Response, service: TaggingService) -> Optional[Dict[str, Any]]:
    summary = enqueue_recompute(service)
    if summary is None:
        response.headers["X-Tag-Recompute"] = "queued"
    return summary


# Rules
@router.get("/rules")
def list_rules(
    rule_status: Optional[str] = Query(None, alias="status"),
    store: TagStore = Depends(get_tag_store),
    user_id: str = Depends(read_members),
) -> List[Dict[str, Any]]:
    """List tag rules in evaluation order."""
    return [r.to_dict() for r in store.list_rules(rule_status)]


@router.post("/rules", status_code=status.HTTP_201_CREATED)
def create_rule(
    body: RuleCreate,
    response: Response,
    store: TagStore = Depends(get_tag_store),
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    """Create a tag rule and re-tag every member."""
    rule = store.create_rule(
        body.name,
        body.tag_id,
        body.condition_field,
        body.condition_operator,
        body.condition_value,
        priority=body.priority,
        condition_type=body.condition_type,
        enabled=body.enabled,
    )
    result = rule.to_dict()
    if rule.is_enabled:
        result["recompute"] = _recompute(response, service)
    return result


@router.patch("/rules/{rule_id}")
def update_rule(
    rule_id: str,
    body: RuleUpdate,
    response: Response,
    store: TagStore = Depends(get_tag_store),
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    rule = store.update_rule(rule_id, body.model_dump(exclude_unset=True))
    result = rule.to_dict()
    if rule.is_enabled:
        result["recompute"] = _recompute(response, service)
    return result


@router.post("/rules/{rule_id}/enable")
def enable_rule(
    rule_id: str,
    response: Response,
    store: TagStore = Depends(get_tag_store),
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    result = store.set_rule_status(rule_id, "enabled").to_dict()
    result["recompute"] = _recompute(response, service)
    return result


@router.post("/rules/{rule_id}/disable")
def disable_rule(
    rule_id: str,
    response: Response,
    store: TagStore = Depends(get_tag_store),
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    result = store.set_rule_status(rule_id, "disabled").to_dict()
    result["recompute"] = _recompute(response, service)
    return result


@router.delete("/rules/{rule_id}")
def delete_rule(
    rule_id: str,
    response: Response,
    store: TagStore = Depends(get_tag_store),
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    store.delete_rule(rule_id)
    return {"deleted": rule_id, "recompute": _recompute(response, service)}


# Re-tagging
@router.post("/apply/{member_id}")
def apply_member_tags(
    member_id: str,
    as_of: Optional[date] = Query(None, description="Evaluation date, defaults to today"),
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    """Re-tag one member now."""
    return service.apply_to_member(member_id, as_of).to_dict()


@router.post("/recompute")
def recompute_all_tags(
    response: Response,
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    """Re-tag every member."""
    summary = _recompute(response, service)
    if summary is None:
        response.status_code = status.HTTP_202_ACCEPTED
        return {"status": "queued"}
    return summary


@router.get("/explain/{member_id}")
def explain_member_tags(
    member_id: str,
    as_of: Optional[date] = Query(None),
    tables: TableService = Depends(get_tables),
    store: TagStore = Depends(get_tag_store),
    service: TaggingService = Depends(get_tagging_service),
    user_id: str = Depends(read_members),
) -> Dict[str, Any]:
    """Show which rules match a member, without saving anything."""
    member = tables.get(Table.MEMBERS, member_id)
    evaluation = service.engine.explain(
        member, store.active_rules(), as_of, store.known_tag_ids()
    )
    return evaluation.to_dict()


# Tags
@router.get("")
def list_tags(
    category: Optional[str] = Query(None),
    store: TagStore = Depends(get_tag_store),
    user_id: str = Depends(read_members),
) -> List[Dict[str, Any]]:
    return [t.to_dict() for t in store.list_tags(category)]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_tag(
    body: TagCreate,
    store: TagStore = Depends(get_tag_store),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    return store.create_tag(body.name, body.category, body.color, body.description).to_dict()


@router.get("/{tag_id}")
def get_tag(
    tag_id: str,
    store: TagStore = Depends(get_tag_store),
    user_id: str = Depends(read_members),
) -> Dict[str, Any]:
    return store.get_tag(tag_id).to_dict()


@router.patch("/{tag_id}")
def update_tag(
    tag_id: str,
    body: TagUpdateRequest,
    store: TagStore = Depends(get_tag_store),
    user_id: str = Depends(update_members),
) -> Dict[str, Any]:
    return store.update_tag(tag_id, body.model_dump(exclude_unset=True)).to_dict()


@router.delete("/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tag(
    tag_id: str,
    store: TagStore = Depends(get_tag_store),
    user_id: str = Depends(update_members),
) -> None:
    store.delete_tag(tag_id)
