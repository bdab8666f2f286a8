"""Pure-logic condition evaluator for automation rules.

Evaluates JSON condition arrays against a message context dictionary.
No database or SQLAlchemy imports, so it is easy to unit test.
"""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_MISSING = object()


def evaluate_conditions(conditions: list[dict], context: dict) -> bool:
    """Evaluate all conditions against context (AND logic).

    Returns True if all conditions pass, or if conditions list is empty.
    """
    if not conditions:
        return True

    for condition in conditions:
        field = str(condition.get("field") or "").strip()
        op = str(condition.get("op") or "").strip()
        value = condition.get("value")
        if isinstance(value, str):
            value = value.strip()

        field_value = _resolve_field(context, field)

        if not _evaluate_single(field_value, op, value):
            return False

    return True


def _resolve_field(context: dict, field_path: str) -> Any:
    """Resolve a dot-separated field path from context dict.

    Returns _MISSING sentinel if field is not found.
    """
    field_path = (field_path or "").strip()
    if not field_path:
        return _MISSING

    current: Any = context
    for part in field_path.split("."):
        part = part.strip()
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING

    return current


def _evaluate_single(field_value: Any, op: str, expected: Any) -> bool:
    """Evaluate a single condition.

    Returns False for unknown operators (fail-closed).
    """
    if op == "exists":
        return field_value is not _MISSING and field_value is not None

    if op == "not_exists":
        return field_value is _MISSING or field_value is None

    # For remaining ops, missing field means condition fails
    if field_value is _MISSING:
        return False

    if op == "eq":
        return _loose_equals(field_value, expected)

    if op == "neq":
        return not _loose_equals(field_value, expected)

    if op == "in":
        if isinstance(expected, list):
            return any(_loose_equals(field_value, item) for item in expected)
        return False

    if op == "not_in":
        if isinstance(expected, list):
            return not any(_loose_equals(field_value, item) for item in expected)
        return True

    if op == "contains":
        return _contains(field_value, expected)

    if op == "not_contains":
        return not _contains(field_value, expected)

    if op == "starts_with":
        return isinstance(field_value, str) and isinstance(expected, str) and (
            field_value.lower().startswith(expected.lower())
        )

    if op == "ends_with":
        return isinstance(field_value, str) and isinstance(expected, str) and (
            field_value.lower().endswith(expected.lower())
        )

    if op == "matches":
        if not isinstance(field_value, str) or not isinstance(expected, str):
            return False
        try:
            return re.search(expected, field_value, re.IGNORECASE) is not None
        except re.error:
            logger.warning("Invalid automation condition regex: %s", expected)
            return False

    if op in ("gt", "lt", "gte", "lte"):
        return _compare_numeric(field_value, op, expected)

    logger.warning("Unknown automation condition operator: %s", op)
    return False


def _contains(field_value: Any, expected: Any) -> bool:
    if isinstance(field_value, str) and isinstance(expected, str):
        return expected.lower() in field_value.lower()
    if isinstance(field_value, list | tuple):
        return expected in field_value
    return False


def _loose_equals(a: Any, b: Any) -> bool:
    """Compare with type coercion for numeric strings.

    Form inputs produce strings such as "5" that must equal numeric
    context values such as 5.
    """
    if a == b:
        return True
    if type(a) is not type(b):
        if isinstance(a, bool) or isinstance(b, bool):
            return str(a).lower() == str(b).lower()
        try:
            return float(a) == float(b)
        except (TypeError, ValueError):
            pass
    return False


def _compare_numeric(field_value: Any, op: str, expected: Any) -> bool:
    """Attempt numeric comparison, returning False on coercion failure."""
    try:
        a = float(field_value)
        b = float(expected)
    except (TypeError, ValueError):
        return False

    if op == "gt":
        return a > b
    if op == "lt":
        return a < b
    if op == "gte":
        return a >= b
    if op == "lte":
        return a <= b
    return False
