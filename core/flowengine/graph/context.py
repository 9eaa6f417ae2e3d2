"""
Execution context - the mutable state bag threaded through one run.

``input`` is the caller's payload and never changes. ``variables`` maps
node ids to their last result and also holds the special keys the engine
writes on failures. A context belongs to exactly one run and is never
persisted.
"""

from dataclasses import dataclass, field
from typing import Any

ERROR_KEY = "$error"
FAILED_NODE_KEY = "$failedNode"
WORKFLOW_ID_KEY = "$workflowId"
EXECUTION_ID_KEY = "$executionId"


@dataclass
class ExecutionContext:
    """Shared ``{input, variables}`` state for a single workflow run."""

    input: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)

    def lookup(self, name: str) -> tuple[bool, Any]:
        """
        Find a top-level name, checking variables before input.

        Returns ``(found, value)`` so a stored None is distinguishable from
        a missing key.
        """
        if name in self.variables:
            return True, self.variables[name]
        if name in self.input:
            return True, self.input[name]
        return False, None

    def set_result(self, node_id: str, result: Any) -> None:
        self.variables[node_id] = result

    def record_failure(self, error: dict[str, Any], failed_node: dict[str, Any]) -> None:
        """Stash a node failure where downstream nodes can read it."""
        self.variables[ERROR_KEY] = error
        self.variables[FAILED_NODE_KEY] = failed_node

    def derive(self, **extra_variables: Any) -> "ExecutionContext":
        """
        Copy this context with extra variables layered on top.

        The copy is shallow: nested results are shared, but writes to the
        copy's variables never reach the original.
        """
        return ExecutionContext(
            input=self.input,
            variables={**self.variables, **extra_variables},
        )

    def to_dict(self) -> dict[str, Any]:
        return {"input": self.input, "variables": self.variables}
