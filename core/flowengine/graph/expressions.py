"""
Placeholder resolution for node configuration values.

A placeholder is ``{{path}}`` where ``path`` is a dot-separated list of
identifiers (``$`` allowed) and numeric list indexes, for example
``{{fetch.body.items.0.id}}`` or ``{{$error.message}}``. The first segment
is looked up in the run's variables, then in its input; the remaining
segments walk into the found value.

A string that is exactly one placeholder resolves to the raw value, so
numbers, lists and dicts keep their type. A placeholder embedded in a
longer string is interpolated as text. Unresolvable placeholders are left
as the literal token when they stand alone and render as ``""`` when
embedded.
"""

import json
import re
from typing import Any

from flowengine.graph.context import ExecutionContext

TOKEN_PATTERN = re.compile(r"\{\{\s*([\w$]+(?:\.[\w$]+)*)\s*\}\}")

_MISSING = object()


def walk_path(value: Any, segments: list[str]) -> Any:
    """Follow ``segments`` into nested dicts and lists. Returns _MISSING on any miss."""
    current = value
    for segment in segments:
        if isinstance(current, dict):
            if segment not in current:
                return _MISSING
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def lookup_path(path: str, context: ExecutionContext) -> Any:
    """Resolve a dot path against the context, or return _MISSING."""
    head, *rest = path.split(".")
    found, value = context.lookup(head)
    if not found:
        return _MISSING
    return walk_path(value, rest)


def is_missing(value: Any) -> bool:
    return value is _MISSING


def stringify(value: Any) -> str:
    """Render a resolved value for interpolation into a larger string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def resolve_value(value: Any, context: ExecutionContext) -> Any:
    """Resolve every placeholder in ``value``. Never raises."""
    if isinstance(value, str):
        return _resolve_string(value, context)
    if isinstance(value, (dict, list)):
        return resolve_object(value, context)
    return value


def resolve_object(value: Any, context: ExecutionContext) -> Any:
    """Recursively resolve placeholders inside dicts and lists."""
    if isinstance(value, dict):
        return {key: resolve_value(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, context) for item in value]
    return resolve_value(value, context)


def has_placeholder(value: Any) -> bool:
    return isinstance(value, str) and TOKEN_PATTERN.search(value) is not None


def _resolve_string(text: str, context: ExecutionContext) -> Any:
    whole = TOKEN_PATTERN.fullmatch(text.strip())
    if whole:
        resolved = lookup_path(whole.group(1), context)
        return text if resolved is _MISSING else resolved

    def _substitute(match: re.Match) -> str:
        resolved = lookup_path(match.group(1), context)
        return "" if resolved is _MISSING else stringify(resolved)

    return TOKEN_PATTERN.sub(_substitute, text)
