"""
Graph execution: context, placeholder resolution, guard evaluation and the
retry policy. The engine itself lives in ``flowengine.graph.executor``.
"""

from flowengine.graph.conditions import evaluate_condition
from flowengine.graph.context import ExecutionContext
from flowengine.graph.expressions import resolve_object, resolve_value

__all__ = [
    "ExecutionContext",
    "evaluate_condition",
    "resolve_object",
    "resolve_value",
]
