"""Control-flow and data-shaping handlers: condition, loop, delay and transform."""

import asyncio
import json
import logging
import math
from typing import Any, Literal

from pydantic import BaseModel, Field

from flowengine.errors import ConfigurationError
from flowengine.graph.conditions import loose_equals, to_number
from flowengine.graph.context import ExecutionContext
from flowengine.graph.expressions import has_placeholder, resolve_value
from flowengine.handlers.base import HandlerConfig, NodeHandler
from flowengine.schemas.workflow import Node

logger = logging.getLogger(__name__)


# === CONDITION ===


class ConditionConfig(HandlerConfig):
    left_value: Any = None
    operator: str = Field(min_length=1)
    right_value: Any = None


def _strict_equals(left: Any, right: Any) -> bool:
    numeric = (int, float)
    if (
        isinstance(left, numeric)
        and isinstance(right, numeric)
        and not isinstance(left, bool)
        and not isinstance(right, bool)
    ):
        return left == right
    return type(left) is type(right) and left == right


def _is_empty(value: Any) -> bool:
    if value is None or value is False or value == 0:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _text(value: Any) -> str:
    return "" if value is None else str(value)


class ConditionHandler(NodeHandler):
    """
    Compares two resolved values and returns ``{"result": bool, ...}``.

    Downstream guards usually branch on ``{{node_id.result}}``. Unlike
    connection guards, an unknown operator here is a configuration error.
    """

    config_model = ConditionConfig

    OPERATORS = {
        "==": loose_equals,
        "equals": loose_equals,
        "===": _strict_equals,
        "strictEquals": _strict_equals,
        "!=": lambda a, b: not loose_equals(a, b),
        "notEquals": lambda a, b: not loose_equals(a, b),
        "!==": lambda a, b: not _strict_equals(a, b),
        "strictNotEquals": lambda a, b: not _strict_equals(a, b),
        ">": lambda a, b: to_number(a) > to_number(b),
        "greaterThan": lambda a, b: to_number(a) > to_number(b),
        ">=": lambda a, b: to_number(a) >= to_number(b),
        "greaterThanOrEqual": lambda a, b: to_number(a) >= to_number(b),
        "<": lambda a, b: to_number(a) < to_number(b),
        "lessThan": lambda a, b: to_number(a) < to_number(b),
        "<=": lambda a, b: to_number(a) <= to_number(b),
        "lessThanOrEqual": lambda a, b: to_number(a) <= to_number(b),
        "contains": lambda a, b: _text(b) in _text(a),
        "startsWith": lambda a, b: _text(a).startswith(_text(b)),
        "endsWith": lambda a, b: _text(a).endswith(_text(b)),
        "isEmpty": lambda a, _: _is_empty(a),
        "isNotEmpty": lambda a, _: not _is_empty(a),
    }

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        compare = self.OPERATORS.get(config.operator)
        if compare is None:
            raise ConfigurationError(f"Unknown operator: {config.operator}", node_id=node.id)

        return {
            "result": bool(compare(config.left_value, config.right_value)),
            "leftValue": config.left_value,
            "rightValue": config.right_value,
            "operator": config.operator,
        }


# === LOOP ===


class LoopConfig(HandlerConfig):
    loop_type: Literal["forEach", "range"]
    items: Any = None
    start: Any = 0
    end: Any = 10
    step: Any = 1


def _as_count(value: Any, default: float, field: str, node: Node) -> float:
    number = to_number(value) if value not in (None, "") else default
    if math.isnan(number):
        raise ConfigurationError(f"Loop {field} must be a number, got {value!r}", node_id=node.id)
    return number


def _plain(number: float) -> int | float:
    return int(number) if float(number).is_integer() else number


class LoopHandler(NodeHandler):
    """Expands a list or numeric range into per-iteration records."""

    config_model = LoopConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        results: list[dict[str, Any]] = []

        if config.loop_type == "forEach":
            items = config.items
            if not isinstance(items, list):
                raise ConfigurationError(
                    "Items must be a list for a forEach loop", node_id=node.id
                )
            for index, item in enumerate(items):
                results.append(
                    {
                        "index": index,
                        "item": item,
                        "isFirst": index == 0,
                        "isLast": index == len(items) - 1,
                    }
                )
        else:
            start = _as_count(config.start, 0, "start", node)
            end = _as_count(config.end, 10, "end", node)
            step = _as_count(config.step, 1, "step", node)
            if step <= 0:
                raise ConfigurationError("Loop step must be positive", node_id=node.id)

            value = start
            index = 0
            while value < end:
                results.append(
                    {
                        "index": index,
                        "value": _plain(value),
                        "isFirst": index == 0,
                        "isLast": value + step >= end,
                    }
                )
                value += step
                index += 1

        return {"iterations": len(results), "results": results}


# === DELAY ===

_UNIT_MS = {
    "ms": 1,
    "milliseconds": 1,
    "s": 1_000,
    "seconds": 1_000,
    "m": 60_000,
    "minutes": 60_000,
    "h": 3_600_000,
    "hours": 3_600_000,
}


class DelayConfig(HandlerConfig):
    duration: float = Field(gt=0)
    unit: str = "seconds"


class DelayHandler(NodeHandler):
    config_model = DelayConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        factor = _UNIT_MS.get(config.unit)
        if factor is None:
            raise ConfigurationError(f"Unknown time unit: {config.unit}", node_id=node.id)

        delay_ms = config.duration * factor
        logger.debug(f"Delaying {delay_ms:.0f}ms")
        await asyncio.sleep(delay_ms / 1000)

        return {
            "delayed": True,
            "duration": _plain(config.duration),
            "unit": config.unit,
            "delayMs": _plain(delay_ms),
        }


# === TRANSFORM ===


class Transformation(BaseModel):
    output_key: str = Field(default="", alias="outputKey")
    expression: Any = None

    model_config = {"populate_by_name": True, "extra": "ignore"}


class TransformConfig(HandlerConfig):
    transformations: list[Transformation]


class TransformHandler(NodeHandler):
    """
    Builds a new dict from a list of ``outputKey`` / ``expression`` pairs.

    Expressions containing placeholders are resolved against the context.
    Other strings are parsed as JSON when possible and kept as text
    otherwise.
    """

    config_model = TransformConfig
    resolve_placeholders = False

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        result: dict[str, Any] = {}
        for transformation in config.transformations:
            if not transformation.output_key or transformation.expression in (None, ""):
                continue
            result[transformation.output_key] = self._evaluate(transformation.expression, context)
        return result

    def _evaluate(self, expression: Any, context: ExecutionContext) -> Any:
        if not isinstance(expression, str):
            return resolve_value(expression, context)
        if has_placeholder(expression):
            return resolve_value(expression, context)
        try:
            return json.loads(expression)
        except ValueError:
            return expression
