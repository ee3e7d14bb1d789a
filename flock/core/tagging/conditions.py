"""Tag rule conditions.

A condition tests one field of a member record. Conditions are built once
from the loosely typed rule row (field, operator, value strings) into one
of a fixed set of variants, each holding only the operand it needs:

    TextCondition          equals, not_equals, contains    string
    CompareCondition       greater_than, less_than         number or date
    MembershipCondition    in                              set of strings
    PresenceCondition      is_empty, is_not_empty          nothing
    ElapsedDaysCondition   date rules: days since a date   whole days
    InvalidCondition       anything malformed              the reason

Evaluation never raises. A missing field fails every operator except
is_empty and not_equals; an operand or field that will not parse makes
the condition false. One malformed rule therefore never stops the rest
of a rule set from being evaluated.
"""

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, FrozenSet, Mapping, Optional, Union

from flock.common.logger import get_logger

logger = get_logger("tagging.conditions")


class Operator(str, Enum):
    """Operators a tag rule may use."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"            # Substring, or element of a list field
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"                        # Operand is a comma-delimited list
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class ConditionType(str, Enum):
    """How the field is read."""

    FIELD = "field"    # Compare the field's value directly
    DATE = "date"      # Compare whole days elapsed since the field's date


TEXT_OPERATORS = frozenset({Operator.EQUALS, Operator.NOT_EQUALS, Operator.CONTAINS})
COMPARE_OPERATORS = frozenset({Operator.GREATER_THAN, Operator.LESS_THAN})
PRESENCE_OPERATORS = frozenset({Operator.IS_EMPTY, Operator.IS_NOT_EMPTY})
ELAPSED_OPERATORS = frozenset({Operator.GREATER_THAN, Operator.LESS_THAN, Operator.EQUALS})

LIST_DELIMITER = ","
DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d")
DECIMAL_LITERAL = re.compile(r"^-?(0|[1-9]\d*)(\.\d+)?$")

_LIST_TYPES = (list, tuple, set, frozenset)


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


def parse_number(value: Any) -> Optional[float]:
    """Parse a finite number, or return None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def parse_date(value: Any) -> Optional[date]:
    """Parse a calendar date from a date, datetime or string, or return None."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def _canonical(value: Any) -> str:
    """Normalise a scalar so that "5", 5 and 5.0 compare equal.

    Only plain decimal literals are read as numbers; "0912", "007" and
    "1e2" stay strings.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = parse_number(value)
    else:
        text = _text(value)
        number = float(text) if DECIMAL_LITERAL.match(text) else None
    if number is not None:
        return str(int(number)) if number.is_integer() else repr(number)
    return _text(value)


def _is_absent(value: Any) -> bool:
    return value is None


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (*_LIST_TYPES, dict)):
        return len(value) == 0
    return False


# ---------------------------------------------------------------------------
# Condition variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextCondition:
    """equals / not_equals / contains against a string operand."""

    field: str
    operator: Operator
    value: str

    def matches(self, record: Mapping[str, Any], as_of: Optional[date] = None) -> bool:
        actual = record.get(self.field)
        if _is_absent(actual):
            return self.operator == Operator.NOT_EQUALS

        if self.operator == Operator.CONTAINS:
            needle = self.value.casefold()
            if isinstance(actual, _LIST_TYPES):
                return any(_text(item).casefold() == needle for item in actual)
            return needle in _text(actual).casefold()

        equal = _canonical(actual) == _canonical(self.value)
        return equal if self.operator == Operator.EQUALS else not equal

    def describe(self) -> str:
        return f"{self.field} {self.operator.value} {self.value!r}"


@dataclass(frozen=True)
class CompareCondition:
    """greater_than / less_than against a number or a date.

    The operand's kind is fixed when the rule is built; the field must
    parse to the same kind.
    """

    field: str
    operator: Operator
    threshold: Union[float, date]

    def matches(self, record: Mapping[str, Any], as_of: Optional[date] = None) -> bool:
        actual = record.get(self.field)
        if _is_absent(actual):
            return False

        if isinstance(self.threshold, float):
            value = parse_number(actual)
        else:
            value = parse_date(actual)
        if value is None:
            return False

        if self.operator == Operator.GREATER_THAN:
            return value > self.threshold
        return value < self.threshold

    def describe(self) -> str:
        threshold = self.threshold.isoformat() if isinstance(self.threshold, date) else self.threshold
        return f"{self.field} {self.operator.value} {threshold}"


@dataclass(frozen=True)
class MembershipCondition:
    """in: the field's value is one of a fixed set."""

    field: str
    options: FrozenSet[str]
    operator: Operator = Operator.IN

    def matches(self, record: Mapping[str, Any], as_of: Optional[date] = None) -> bool:
        actual = record.get(self.field)
        if _is_absent(actual):
            return False
        if isinstance(actual, _LIST_TYPES):
            return any(_canonical(item) in self.options for item in actual)
        return _canonical(actual) in self.options

    def describe(self) -> str:
        return f"{self.field} in {sorted(self.options)}"


@dataclass(frozen=True)
class PresenceCondition:
    """is_empty / is_not_empty."""

    field: str
    operator: Operator

    def matches(self, record: Mapping[str, Any], as_of: Optional[date] = None) -> bool:
        blank = _is_blank(record.get(self.field))
        return blank if self.operator == Operator.IS_EMPTY else not blank

    def describe(self) -> str:
        return f"{self.field} {self.operator.value}"


@dataclass(frozen=True)
class ElapsedDaysCondition:
    """Whole days from the field's date to the evaluation date.

    as_of defaults to today; the engine always passes it explicitly.
    """

    field: str
    operator: Operator
    days: int

    def matches(self, record: Mapping[str, Any], as_of: Optional[date] = None) -> bool:
        start = parse_date(record.get(self.field))
        if start is None:
            return False
        elapsed = ((as_of or date.today()) - start).days

        if self.operator == Operator.GREATER_THAN:
            return elapsed > self.days
        if self.operator == Operator.LESS_THAN:
            return elapsed < self.days
        return elapsed == self.days

    def describe(self) -> str:
        return f"days since {self.field} {self.operator.value} {self.days}"


@dataclass(frozen=True)
class InvalidCondition:
    """A rule that could not be built. Never matches."""

    field: str
    operator: str
    reason: str

    def matches(self, record: Mapping[str, Any], as_of: Optional[date] = None) -> bool:
        return False

    def describe(self) -> str:
        return f"invalid condition on {self.field or '?'}: {self.reason}"


Condition = Union[
    TextCondition,
    CompareCondition,
    MembershipCondition,
    PresenceCondition,
    ElapsedDaysCondition,
    InvalidCondition,
]


# ---------------------------------------------------------------------------
# Construction and evaluation
# ---------------------------------------------------------------------------


def build_condition(
    field: str,
    operator: Union[str, Operator],
    operand: Any = "",
    condition_type: Union[str, ConditionType, None] = ConditionType.FIELD,
) -> Condition:
    """Build a condition variant from raw rule values.

    Never raises: anything malformed becomes an InvalidCondition.
    """
    field = (field or "").strip()
    raw_operator = operator.value if isinstance(operator, Operator) else str(operator or "")
    if not field:
        return InvalidCondition(field, raw_operator, "missing field")

    try:
        op = Operator(raw_operator.strip().lower())
    except ValueError:
        return InvalidCondition(field, raw_operator, f"unknown operator {raw_operator!r}")

    raw_type = condition_type.value if isinstance(condition_type, ConditionType) else str(condition_type or "")
    try:
        ctype = ConditionType(raw_type.strip().lower() or ConditionType.FIELD.value)
    except ValueError:
        return InvalidCondition(field, raw_operator, f"unknown condition type {raw_type!r}")

    if ctype == ConditionType.DATE:
        if op not in ELAPSED_OPERATORS:
            return InvalidCondition(field, raw_operator, f"{op.value} is not supported for date rules")
        days = parse_number(operand)
        if days is None or not days.is_integer() or days < 0:
            return InvalidCondition(field, raw_operator, f"expected a whole number of days, got {operand!r}")
        return ElapsedDaysCondition(field, op, int(days))

    if op in PRESENCE_OPERATORS:
        return PresenceCondition(field, op)

    text = "" if operand is None else _text(operand)

    if op in TEXT_OPERATORS:
        if op == Operator.CONTAINS and not text:
            return InvalidCondition(field, raw_operator, "contains needs a value")
        return TextCondition(field, op, text)

    if op in COMPARE_OPERATORS:
        number = parse_number(operand)
        if number is not None:
            return CompareCondition(field, op, number)
        when = parse_date(operand)
        if when is not None:
            return CompareCondition(field, op, when)
        return InvalidCondition(field, raw_operator, f"expected a number or date, got {operand!r}")

    # Operator.IN
    options = frozenset(
        _canonical(part) for part in text.split(LIST_DELIMITER) if part.strip()
    )
    if not options:
        return InvalidCondition(field, raw_operator, "in needs at least one value")
    return MembershipCondition(field, options)


def condition_matches(
    condition: Condition, record: Mapping[str, Any], as_of: Optional[date] = None
) -> bool:
    """Evaluate a condition, turning any unexpected failure into False."""
    try:
        return bool(condition.matches(record, as_of))
    except Exception as e:
        logger.warning(f"Condition '{condition.describe()}' failed to evaluate: {e}")
        return False


def evaluate(field_value: Any, operator: Union[str, Operator], operand: Any = "") -> bool:
    """Evaluate a single field value against an operator and operand.

    field_value None means the field is absent.
    """
    condition = build_condition("value", operator, operand)
    return condition_matches(condition, {"value": field_value})
