"""Tag rule evaluation engine.

Evaluates a member record against the active tag rules and returns the
set of tag ids the rules derive. Evaluation is a pure function of
(member snapshot, rule set, evaluation date): it reads nothing else and
writes nothing. Persisting the result is the tagging service's job.

Every rule is evaluated; there is no short-circuiting, and a malformed
rule only ever fails to match.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from flock.common.logger import get_logger
from .conditions import (
    Condition,
    ConditionType,
    InvalidCondition,
    build_condition,
    condition_matches,
    parse_number,
)

logger = get_logger("tagging.engine")

TAG_DELIMITER = ","


class RuleStatus(str, Enum):
    """Lifecycle of a tag rule. Only enabled rules are evaluated."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    DELETED = "deleted"


# Status values written by earlier versions of the Tag_Rules sheet
LEGACY_RULE_STATUSES = {
    "active": RuleStatus.ENABLED,
    "inactive": RuleStatus.DISABLED,
}


def parse_rule_status(raw: Any) -> RuleStatus:
    """Parse a stored rule status. Blank or unknown values mean disabled."""
    text = str(raw or "").strip().lower()
    if text in LEGACY_RULE_STATUSES:
        return LEGACY_RULE_STATUSES[text]
    try:
        return RuleStatus(text)
    except ValueError:
        return RuleStatus.DISABLED


def parse_priority(raw: Any) -> Optional[int]:
    """Parse a rule priority: a whole number >= 0, blank meaning 0."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return 0
    number = parse_number(raw)
    if number is None or not number.is_integer() or number < 0:
        return None
    return int(number)


def split_tags(raw: Any) -> FrozenSet[str]:
    """Parse a comma-separated tag cell (or a list) into a set of ids."""
    if raw is None:
        return frozenset()
    if isinstance(raw, (list, tuple, set, frozenset)):
        parts = [str(p) for p in raw]
    else:
        parts = str(raw).split(TAG_DELIMITER)
    return frozenset(p.strip() for p in parts if p.strip())


def join_tags(tag_ids: Iterable[str]) -> str:
    """Serialize tag ids into the comma-separated cell format, sorted."""
    return TAG_DELIMITER.join(sorted(tag_ids))


@dataclass(frozen=True)
class TagRule:
    """A condition that, when it matches a member, derives one tag."""

    id: str
    tag_id: str
    condition: Condition
    priority: Optional[int] = 0
    status: RuleStatus = RuleStatus.ENABLED
    name: str = ""
    condition_type: str = ConditionType.FIELD.value
    condition_field: str = ""
    condition_operator: str = ""
    condition_value: str = ""
    created_at: str = ""

    @property
    def is_enabled(self) -> bool:
        return self.status == RuleStatus.ENABLED

    @property
    def sort_key(self):
        # Rules with an unreadable priority sort last
        priority = self.priority if self.priority is not None else float("inf")
        return (priority, self.id)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TagRule":
        """Build a rule from a Tag_Rules row. Never raises on bad data."""
        rule_id = str(row.get("id", ""))
        condition_type = str(row.get("condition_type") or ConditionType.FIELD.value).strip().lower()
        condition_field = str(row.get("condition_field") or "").strip()
        condition_operator = str(row.get("condition_operator") or "").strip()
        raw_value = row.get("condition_value")
        condition_value = "" if raw_value is None else str(raw_value)

        priority = parse_priority(row.get("priority"))
        if priority is None:
            condition: Condition = InvalidCondition(
                condition_field, condition_operator, f"invalid priority {row.get('priority')!r}"
            )
        else:
            condition = build_condition(
                condition_field, condition_operator, raw_value, condition_type
            )
        if isinstance(condition, InvalidCondition):
            logger.warning(f"Tag rule {rule_id} will never match: {condition.reason}")

        return cls(
            id=rule_id,
            tag_id=str(row.get("tag_id") or "").strip(),
            condition=condition,
            priority=priority,
            status=parse_rule_status(row.get("status")),
            name=str(row.get("name") or ""),
            condition_type=condition_type,
            condition_field=condition_field,
            condition_operator=condition_operator,
            condition_value=condition_value,
            created_at=str(row.get("created_at") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert rule to dictionary for API responses."""
        data = {
            "id": self.id,
            "name": self.name,
            "tag_id": self.tag_id,
            "condition_type": self.condition_type,
            "condition_field": self.condition_field,
            "condition_operator": self.condition_operator,
            "condition_value": self.condition_value,
            "priority": self.priority,
            "status": self.status.value,
            "created_at": self.created_at,
        }
        if isinstance(self.condition, InvalidCondition):
            data["invalid_reason"] = self.condition.reason
        return data


@dataclass
class RuleMatch:
    """Result of evaluating a single rule."""

    rule: TagRule
    matched: bool
    reason: str = ""


@dataclass
class TagEvaluation:
    """Result of evaluating a rule set against one member."""

    member_id: str
    as_of: date
    matched_rules: List[RuleMatch] = field(default_factory=list)
    unmatched_rules: List[RuleMatch] = field(default_factory=list)

    @property
    def tag_ids(self) -> FrozenSet[str]:
        return frozenset(m.rule.tag_id for m in self.matched_rules)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "as_of": self.as_of.isoformat(),
            "tag_ids": sorted(self.tag_ids),
            "matched_rules": [
                {"rule_id": m.rule.id, "tag_id": m.rule.tag_id, "reason": m.reason}
                for m in self.matched_rules
            ],
            "unmatched_rules": [
                {"rule_id": m.rule.id, "tag_id": m.rule.tag_id, "reason": m.reason}
                for m in self.unmatched_rules
            ],
        }


@dataclass(frozen=True)
class TagState:
    """The three tag columns of a member row."""

    tags: FrozenSet[str] = frozenset()
    auto_tags: FrozenSet[str] = frozenset()
    manual_tags: FrozenSet[str] = frozenset()

    @property
    def manual(self) -> FrozenSet[str]:
        """Human-owned tags.

        Tags present in `tags` but not derived by the previous evaluation
        were applied by hand, even when manual_tags does not list them.
        """
        return self.manual_tags | (self.tags - self.auto_tags)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TagState":
        return cls(
            tags=split_tags(row.get("tags")),
            auto_tags=split_tags(row.get("auto_tags")),
            manual_tags=split_tags(row.get("manual_tags")),
        )

    def to_row(self) -> Dict[str, str]:
        return {
            "tags": join_tags(self.tags),
            "auto_tags": join_tags(self.auto_tags),
            "manual_tags": join_tags(self.manual_tags),
        }


def merge_tags(state: TagState, derived: Iterable[str]) -> TagState:
    """Combine rule-derived tags with a member's human-owned tags.

    A rule run can add and remove derived tags but never removes a manual
    tag. Merging the same derived set twice gives the same state.
    """
    derived = frozenset(derived)
    manual = state.manual
    return TagState(tags=manual | derived, auto_tags=derived, manual_tags=manual)


class TagRuleEngine:
    """
    Evaluates members against tag rules.

    Only enabled rules whose tag still exists are considered. Rules are
    evaluated in (priority, id) order and the matched tag ids are unioned;
    order affects only the explanation, never the result.
    """

    def active_rules(
        self,
        rules: Iterable[TagRule],
        known_tag_ids: Optional[Iterable[str]] = None,
    ) -> List[TagRule]:
        """Filter to enabled rules with a known tag, in evaluation order."""
        known = frozenset(known_tag_ids) if known_tag_ids is not None else None
        active = [
            rule for rule in rules
            if rule.is_enabled and (known is None or rule.tag_id in known)
        ]
        return sorted(active, key=lambda r: r.sort_key)

    def explain(
        self,
        member: Mapping[str, Any],
        rules: Iterable[TagRule],
        as_of: Optional[date] = None,
        known_tag_ids: Optional[Iterable[str]] = None,
    ) -> TagEvaluation:
        """
        Evaluate a member and record why each rule did or did not match.

        Args:
            member: Member row
            rules: Candidate rules (any status)
            as_of: Evaluation date for elapsed-day rules; defaults to today
            known_tag_ids: When given, rules for other tags are skipped

        Returns:
            TagEvaluation with matched and unmatched rules in evaluation order
        """
        evaluation = TagEvaluation(
            member_id=str(member.get("id", "")),
            as_of=as_of or date.today(),
        )

        for rule in self.active_rules(rules, known_tag_ids):
            condition = rule.condition
            if isinstance(condition, InvalidCondition):
                evaluation.unmatched_rules.append(RuleMatch(rule, False, condition.reason))
                continue

            if condition_matches(condition, member, evaluation.as_of):
                evaluation.matched_rules.append(RuleMatch(rule, True, condition.describe()))
            else:
                evaluation.unmatched_rules.append(
                    RuleMatch(rule, False, f"not {condition.describe()}")
                )

        return evaluation

    def evaluate(
        self,
        member: Mapping[str, Any],
        rules: Iterable[TagRule],
        as_of: Optional[date] = None,
        known_tag_ids: Optional[Iterable[str]] = None,
    ) -> FrozenSet[str]:
        """Return the tag ids the rules derive for a member."""
        return self.explain(member, rules, as_of, known_tag_ids).tag_ids

    def evaluate_batch(
        self,
        members: Iterable[Mapping[str, Any]],
        rules: Iterable[TagRule],
        as_of: Optional[date] = None,
        known_tag_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, FrozenSet[str]]:
        """Evaluate many members against the same rule set."""
        rules = list(rules)
        as_of = as_of or date.today()
        return {
            str(member.get("id", "")): self.evaluate(member, rules, as_of, known_tag_ids)
            for member in members
        }
