"""Condition rule evaluation for the ``condition`` node.

Both sides of a rule are template strings resolved through the run context
before comparison, so every operator compares text.

Supported operators:
- exists: Field resolves to something other than "", "undefined" or "null"
- not_exists: Field resolves to one of those
- equals: Exact string equality
- not_equals: String inequality
- contains: Case-insensitive substring
- greater_than: Numeric >
- less_than: Numeric <
- regex: Case-insensitive search, with a catastrophic-backtracking guard
"""

import math
import re
from typing import Any, Callable, List, Optional

from core.logging import get_logger

logger = get_logger(__name__)

MISSING_VALUES = frozenset({"", "undefined", "null"})
MAX_PATTERN_LENGTH = 500
MAX_SUBJECT_LENGTH = 2000

# Pattern shapes known to backtrack catastrophically
_UNSAFE_PATTERN_SHAPES = [
    re.compile(r'(\([^)]*[+*][^)]*\))[+*?{]'),   # (a+)+ nested quantifier
    re.compile(r'(\([^)]*\|[^)]*\))[+*?{]'),     # (a|b)+ alternation under a quantifier
    re.compile(r'(\[[^\]]+\])[+*][+*]'),         # [a-z]++ stacked quantifiers
    re.compile(r'\.[+*][^|)]*\.[+*]'),           # .+.+ repeated wildcards
]

Resolve = Callable[[Optional[str]], str]


def is_unsafe_pattern(pattern: str) -> bool:
    """Reject overlong patterns and the known catastrophic shapes."""
    if len(pattern) > MAX_PATTERN_LENGTH:
        return True
    return any(shape.search(pattern) for shape in _UNSAFE_PATTERN_SHAPES)


def _to_number(value: str) -> Optional[float]:
    text = value.strip()
    if not text:
        return 0.0
    try:
        number = float(text)
    except ValueError:
        return None
    return None if math.isnan(number) else number


def _compare_numbers(actual: str, target: Optional[str], comparator) -> bool:
    a = _to_number(actual)
    b = _to_number(target if target is not None else "0")
    if a is None or b is None:
        return False
    return comparator(a, b)


def _regex_test(pattern: str, subject: str) -> bool:
    if not pattern or is_unsafe_pattern(pattern):
        return False
    try:
        return re.search(pattern, subject[:MAX_SUBJECT_LENGTH], re.IGNORECASE) is not None
    except re.error:
        logger.warning("Invalid regex pattern", pattern=pattern)
        return False


def evaluate_rule(field_value: str, operator: str, rule_value: Optional[str]) -> bool:
    """Evaluate one operator over already-resolved strings."""
    if operator == "exists":
        return field_value not in MISSING_VALUES

    elif operator == "not_exists":
        return field_value in MISSING_VALUES

    elif operator == "equals":
        return field_value == (rule_value or "")

    elif operator == "not_equals":
        return field_value != (rule_value or "")

    elif operator == "contains":
        return (rule_value or "").lower() in field_value.lower()

    elif operator == "greater_than":
        return _compare_numbers(field_value, rule_value, lambda a, b: a > b)

    elif operator == "less_than":
        return _compare_numbers(field_value, rule_value, lambda a, b: a < b)

    elif operator == "regex":
        return _regex_test(rule_value or "", field_value)

    logger.warning("Unknown operator", operator=operator)
    return False


def evaluate_condition_rule(rule: Any, resolve: Resolve) -> bool:
    field_value = resolve(rule.field)
    rule_value = resolve(rule.value) if rule.value is not None else None
    result = evaluate_rule(field_value, rule.operator, rule_value)
    logger.debug("Condition rule evaluated", field=rule.field, operator=rule.operator, result=result)
    return result


def evaluate_conditions(rules: List[Any], resolve: Resolve) -> List[bool]:
    """Evaluate every rule; callers combine with ``all()`` or ``any()``."""
    return [evaluate_condition_rule(rule, resolve) for rule in rules]
