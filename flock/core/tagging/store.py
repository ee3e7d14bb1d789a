"""Tag catalogue and tag rule persistence.

Tags and rules are soft-deleted (status = "deleted") because the record
store cannot remove rows. A deleted tag's rules stay in the sheet but are
skipped by the engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from flock.common.logger import get_logger
from flock.core.errors import ConflictError, NotFoundError
from flock.store.base import Table, TableService, utc_now_iso
from .conditions import ConditionType, InvalidCondition, Operator, build_condition
from .engine import RuleStatus, TagRule, parse_priority, parse_rule_status

logger = get_logger("tagging.store")

TAG_FIELDS = frozenset({"name", "category", "color", "description"})
RULE_FIELDS = frozenset({
    "name", "tag_id", "condition_type", "condition_field",
    "condition_operator", "condition_value", "priority",
})


class TagStatus(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


@dataclass(frozen=True)
class Tag:
    """A label that can be applied to members by hand or by rules."""

    id: str
    name: str
    category: str = ""
    color: str = ""
    description: str = ""
    status: TagStatus = TagStatus.ACTIVE
    created_at: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Tag":
        status_raw = str(row.get("status") or TagStatus.ACTIVE.value).strip().lower()
        status = TagStatus.DELETED if status_raw == TagStatus.DELETED.value else TagStatus.ACTIVE
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or "").strip(),
            category=str(row.get("category") or ""),
            color=str(row.get("color") or ""),
            description=str(row.get("description") or ""),
            status=status,
            created_at=str(row.get("created_at") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "color": self.color,
            "description": self.description,
            "status": self.status.value,
            "created_at": self.created_at,
        }


def _validate_rule(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Check a rule definition before it is written.

    Rules already in the store are never rejected, only ignored; this
    check stops new malformed rules from being saved.

    Raises:
        ValueError: If the operator, priority or operand is invalid
    """
    operator = str(values.get("condition_operator") or "").strip().lower()
    try:
        Operator(operator)
    except ValueError:
        raise ValueError(f"Unknown operator: {values.get('condition_operator')!r}") from None

    priority = parse_priority(values.get("priority"))
    if priority is None:
        raise ValueError(f"Priority must be a whole number >= 0, got {values.get('priority')!r}")

    condition_type = str(values.get("condition_type") or ConditionType.FIELD.value).strip().lower()
    condition = build_condition(
        str(values.get("condition_field") or ""),
        operator,
        values.get("condition_value"),
        condition_type,
    )
    if isinstance(condition, InvalidCondition):
        raise ValueError(f"Invalid rule condition: {condition.reason}")

    return {
        "condition_type": condition_type,
        "condition_field": str(values.get("condition_field")).strip(),
        "condition_operator": operator,
        "condition_value": "" if values.get("condition_value") is None else str(values.get("condition_value")),
        "priority": priority,
    }


class TagStore:
    """CRUD for tags and tag rules over a TableService."""

    def __init__(self, tables: TableService):
        self.tables = tables

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def list_tags(self, category: Optional[str] = None, *, include_deleted: bool = False) -> List[Tag]:
        """List tags sorted by category then name."""
        tags = [Tag.from_row(row) for row in self.tables.list(Table.TAGS)]
        if not include_deleted:
            tags = [t for t in tags if t.status != TagStatus.DELETED]
        if category is not None:
            tags = [t for t in tags if t.category == category]
        return sorted(tags, key=lambda t: (t.category, t.name.lower(), t.id))

    def known_tag_ids(self) -> FrozenSet[str]:
        """Ids of every non-deleted tag."""
        return frozenset(t.id for t in self.list_tags())

    def get_tag(self, tag_id: str) -> Tag:
        """Get a tag by id.

        Raises:
            NotFoundError: If the tag doesn't exist or was deleted
        """
        tag = Tag.from_row(self.tables.get(Table.TAGS, tag_id))
        if tag.status == TagStatus.DELETED:
            raise NotFoundError(Table.TAGS.value, tag_id)
        return tag

    def _find_tag_by_name(self, name: str) -> Optional[Tag]:
        wanted = name.strip().lower()
        for tag in self.list_tags():
            if tag.name.lower() == wanted:
                return tag
        return None

    def create_tag(self, name: str, category: str = "", color: str = "", description: str = "") -> Tag:
        """Create a tag.

        Raises:
            ValueError: If the name is empty
            ConflictError: If a tag with the same name exists
        """
        if not name or not name.strip():
            raise ValueError("Tag name is required")
        name = name.strip()
        if self._find_tag_by_name(name) is not None:
            raise ConflictError(f"Tag '{name}' already exists")

        tag_id = self.tables.append(Table.TAGS, {
            "name": name,
            "category": category or "",
            "color": color or "",
            "description": description or "",
            "status": TagStatus.ACTIVE.value,
            "created_at": utc_now_iso(),
        })
        logger.info(f"Created tag '{name}' ({tag_id})")
        return self.get_tag(tag_id)

    def update_tag(self, tag_id: str, patch: Mapping[str, Any]) -> Tag:
        """Apply a patch to a tag.

        Raises:
            NotFoundError: If the tag doesn't exist
            ConflictError: If a rename collides with another tag
            ValueError: If the patch has unknown fields or an empty name
        """
        tag = self.get_tag(tag_id)
        unknown = set(patch) - TAG_FIELDS
        if unknown:
            raise ValueError(f"Unknown tag fields: {', '.join(sorted(unknown))}")

        changes = {k: str(v or "") for k, v in patch.items()}
        if "name" in changes:
            name = changes["name"].strip()
            if not name:
                raise ValueError("Tag name is required")
            existing = self._find_tag_by_name(name)
            if existing is not None and existing.id != tag.id:
                raise ConflictError(f"Tag '{name}' already exists")
            changes["name"] = name

        if changes:
            self.tables.update_by_id(Table.TAGS, tag.id, changes)
        return self.get_tag(tag.id)

    def delete_tag(self, tag_id: str) -> None:
        """Soft-delete a tag. Its rules stop applying."""
        tag = self.get_tag(tag_id)
        self.tables.update_by_id(Table.TAGS, tag.id, {"status": TagStatus.DELETED.value})
        logger.info(f"Deleted tag '{tag.name}' ({tag.id})")

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def list_rules(
        self,
        status: Union[RuleStatus, str, None] = None,
        *,
        include_deleted: bool = False,
    ) -> List[TagRule]:
        """List rules in evaluation order, optionally filtered by status."""
        rules = [TagRule.from_row(row) for row in self.tables.list(Table.TAG_RULES)]
        if status is not None:
            wanted = parse_rule_status(status.value if isinstance(status, RuleStatus) else status)
            rules = [r for r in rules if r.status == wanted]
        elif not include_deleted:
            rules = [r for r in rules if r.status != RuleStatus.DELETED]
        return sorted(rules, key=lambda r: r.sort_key)

    def active_rules(self) -> List[TagRule]:
        """Enabled rules, in evaluation order."""
        return self.list_rules(RuleStatus.ENABLED)

    def get_rule(self, rule_id: str) -> TagRule:
        """Get a rule by id.

        Raises:
            NotFoundError: If the rule doesn't exist or was deleted
        """
        rule = TagRule.from_row(self.tables.get(Table.TAG_RULES, rule_id))
        if rule.status == RuleStatus.DELETED:
            raise NotFoundError(Table.TAG_RULES.value, rule_id)
        return rule

    def create_rule(
        self,
        name: str,
        tag_id: str,
        condition_field: str,
        condition_operator: str,
        condition_value: Any = "",
        *,
        priority: int = 0,
        condition_type: str = ConditionType.FIELD.value,
        enabled: bool = True,
    ) -> TagRule:
        """Create a tag rule.

        Raises:
            NotFoundError: If the tag doesn't exist
            ValueError: If the condition or priority is invalid
        """
        tag = self.get_tag(tag_id)
        values = _validate_rule({
            "condition_type": condition_type,
            "condition_field": condition_field,
            "condition_operator": condition_operator,
            "condition_value": condition_value,
            "priority": priority,
        })
        status = RuleStatus.ENABLED if enabled else RuleStatus.DISABLED

        rule_id = self.tables.append(Table.TAG_RULES, {
            "name": name or "",
            "tag_id": tag.id,
            **values,
            "status": status.value,
            "created_at": utc_now_iso(),
        })
        logger.info(f"Created tag rule '{name}' ({rule_id}) for tag '{tag.name}'")
        return self.get_rule(rule_id)

    def update_rule(self, rule_id: str, patch: Mapping[str, Any]) -> TagRule:
        """Apply a patch to a rule; the resulting rule is validated as a whole.

        Raises:
            NotFoundError: If the rule or the new tag doesn't exist
            ValueError: If the patch has unknown fields or the rule is invalid
        """
        rule = self.get_rule(rule_id)
        unknown = set(patch) - RULE_FIELDS
        if unknown:
            raise ValueError(f"Unknown rule fields: {', '.join(sorted(unknown))}")

        merged = {
            "condition_type": rule.condition_type,
            "condition_field": rule.condition_field,
            "condition_operator": rule.condition_operator,
            "condition_value": rule.condition_value,
            "priority": rule.priority,
        }
        merged.update({k: v for k, v in patch.items() if k in merged})
        changes: Dict[str, Any] = _validate_rule(merged)

        if "tag_id" in patch:
            changes["tag_id"] = self.get_tag(str(patch["tag_id"])).id
        if "name" in patch:
            changes["name"] = str(patch["name"] or "")

        self.tables.update_by_id(Table.TAG_RULES, rule.id, changes)
        logger.info(f"Updated tag rule {rule.id}: {', '.join(sorted(patch))}")
        return self.get_rule(rule.id)

    def set_rule_status(self, rule_id: str, status: Union[RuleStatus, str]) -> TagRule:
        """Enable or disable a rule.

        Raises:
            ValueError: If status is not enabled or disabled
        """
        rule = self.get_rule(rule_id)
        new_status = RuleStatus(status.value if isinstance(status, RuleStatus) else str(status).strip().lower())
        if new_status == RuleStatus.DELETED:
            raise ValueError("Use delete_rule to delete a rule")
        if rule.status != new_status:
            self.tables.update_by_id(Table.TAG_RULES, rule.id, {"status": new_status.value})
            logger.info(f"Tag rule {rule.id} is now {new_status.value}")
        return self.get_rule(rule.id)

    def delete_rule(self, rule_id: str) -> None:
        """Soft-delete a rule."""
        rule = self.get_rule(rule_id)
        self.tables.update_by_id(Table.TAG_RULES, rule.id, {"status": RuleStatus.DELETED.value})
        logger.info(f"Deleted tag rule {rule.id}")
