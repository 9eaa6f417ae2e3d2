"""
Connection guard evaluation.

A guard decides whether the walker follows a connection. Three forms are
accepted, tried in this order:

1. JSON comparison: ``{"field": "x", "operator": "eq", "value": 5}``
2. JSON group: ``{"conditions": [<comparison>, ...], "logic": "and" | "or"}``
3. Infix string: ``status == 'active'`` with ``== != > >= < <= contains``

Fields are dot paths. Paths starting with ``input`` or ``variables`` walk
from the context root; any other path is looked up in variables, then in
input. Equality is loose (``"5"`` equals ``5``) and ordering operators
compare numerically. A guard that cannot be parsed or evaluated is false;
guard problems never abort a run.
"""

import json
import logging
import math
import re
from typing import Any

from flowengine.graph.context import ExecutionContext
from flowengine.graph.expressions import is_missing, lookup_path, walk_path

logger = logging.getLogger(__name__)

INFIX_PATTERN = re.compile(r"^\s*([\w$.]+)\s*(==|!=|>=|<=|>|<|contains)\s*(.+?)\s*$")

_ROOT_SCOPES = ("input", "variables")


def evaluate_condition(guard: str | dict | None, context: ExecutionContext) -> bool:
    """Evaluate a connection guard. A missing guard is always true."""
    if guard is None:
        return True
    try:
        if isinstance(guard, dict):
            return _evaluate_object(guard, context)

        try:
            parsed = json.loads(guard)
        except (TypeError, ValueError):
            return _evaluate_infix(guard, context)
        return _evaluate_object(parsed, context)
    except Exception as e:
        logger.warning(f"Condition evaluation failed for {guard!r}: {e}")
        return False


def _evaluate_object(parsed: Any, context: ExecutionContext) -> bool:
    if not isinstance(parsed, dict):
        logger.warning(f"Invalid condition format: {parsed!r}")
        return False

    if parsed.get("field") and parsed.get("operator") and "value" in parsed:
        return evaluate_comparison(parsed["field"], parsed["operator"], parsed["value"], context)

    conditions = parsed.get("conditions")
    if isinstance(conditions, list):
        # Only an exact "and" requires every comparison; any other value needs one
        logic = parsed.get("logic") or "and"
        results = [
            evaluate_comparison(c.get("field", ""), c.get("operator", ""), c.get("value"), context)
            for c in conditions
            if isinstance(c, dict)
        ]
        return all(results) if logic == "and" else any(results)

    logger.warning(f"Invalid condition format: {parsed!r}")
    return False


def _evaluate_infix(expression: str, context: ExecutionContext) -> bool:
    match = INFIX_PATTERN.match(expression)
    if not match:
        logger.warning(f"Could not parse condition expression: {expression!r}")
        return False

    field, operator, raw_value = match.groups()
    value = _strip_quotes(raw_value)
    return evaluate_comparison(field, operator, value, context)


def _strip_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    return text


def resolve_field(field: str, context: ExecutionContext) -> Any:
    """Resolve a guard field path; returns the expressions module's missing marker on a miss."""
    head, _, _ = field.partition(".")
    if head in _ROOT_SCOPES:
        return walk_path(context.to_dict(), field.split("."))
    return lookup_path(field, context)


def evaluate_comparison(
    field: str, operator: str, expected: Any, context: ExecutionContext
) -> bool:
    """Compare the value at ``field`` against ``expected``."""
    actual = resolve_field(str(field), context)

    if is_missing(actual):
        return operator in ("ne", "!=")

    match operator:
        case "eq" | "==":
            return loose_equals(actual, expected)
        case "ne" | "!=":
            return not loose_equals(actual, expected)
        case "gt" | ">":
            return to_number(actual) > to_number(expected)
        case "gte" | ">=":
            return to_number(actual) >= to_number(expected)
        case "lt" | "<":
            return to_number(actual) < to_number(expected)
        case "lte" | "<=":
            return to_number(actual) <= to_number(expected)
        case "contains":
            return _as_text(expected) in _as_text(actual)
        case "regex":
            return re.search(str(expected), _as_text(actual)) is not None
        case _:
            logger.warning(f"Unknown condition operator: {operator!r}")
            return False


def to_number(value: Any) -> float:
    """Numeric coercion used by ordering operators. Non-numeric values become NaN."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def loose_equals(left: Any, right: Any) -> bool:
    """
    Equality that tolerates type differences between stored and literal values.

    None only equals None. Booleans compare as 1/0. A number compared with
    a string compares numerically. Everything else uses ordinary equality.
    """
    if left is None or right is None:
        return left is None and right is None

    if isinstance(left, bool):
        left = int(left)
    if isinstance(right, bool):
        right = int(right)

    left_is_number = isinstance(left, (int, float))
    right_is_number = isinstance(right, (int, float))
    if left_is_number and isinstance(right, str):
        return float(left) == to_number(right)
    if right_is_number and isinstance(left, str):
        return to_number(left) == float(right)
    if left_is_number and right_is_number:
        return float(left) == float(right)

    return left == right


def _as_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)
