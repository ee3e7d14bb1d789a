"""Rule-driven member tagging for flock."""

from .conditions import Operator, ConditionType, build_condition, evaluate
from .engine import (
    RuleStatus,
    TagRule,
    TagRuleEngine,
    TagEvaluation,
    TagState,
    merge_tags,
)
from .store import Tag, TagStore
from .service import TaggingService, TagUpdate, RecomputeSummary

__all__ = [
    "Operator",
    "ConditionType",
    "build_condition",
    "evaluate",
    "RuleStatus",
    "TagRule",
    "TagRuleEngine",
    "TagEvaluation",
    "TagState",
    "merge_tags",
    "Tag",
    "TagStore",
    "TaggingService",
    "TagUpdate",
    "RecomputeSummary",
]
