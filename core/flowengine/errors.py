"""
Error taxonomy for the workflow engine.

Configuration errors fail a single node without retrying. Node execution
errors are retried per the node's execution config. A workflow execution
error unwinds the whole run. Storage errors surface revision conflicts and
missing records.
"""

from __future__ import annotations


class FlowEngineError(Exception):
    """Base class for all engine errors."""


# === NODE LEVEL ===


class ConfigurationError(FlowEngineError):
    """A node is misconfigured (missing or invalid config field)."""

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class UnknownNodeTypeError(ConfigurationError):
    """No handler is registered for a node's type tag."""

    def __init__(self, node_type: str, node_id: str | None = None):
        super().__init__(f"No handler for node type: {node_type}", node_id=node_id)
        self.node_type = node_type


class NodeExecutionError(FlowEngineError):
    """A handler failed while executing a node."""

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class NodeTimeoutError(NodeExecutionError):
    """A handler did not settle within the node's timeout."""

    def __init__(self, node_id: str, timeout_ms: int):
        super().__init__(f"Node execution timed out after {timeout_ms}ms", node_id=node_id)
        self.timeout_ms = timeout_ms


# === RUN LEVEL ===


class WorkflowExecutionError(FlowEngineError):
    """A node failure that aborts the whole run."""

    def __init__(
        self,
        message: str,
        workflow_id: str | None = None,
        node_id: str | None = None,
    ):
        super().__init__(message)
        self.workflow_id = workflow_id
        self.node_id = node_id


class ExecutionCancelledError(FlowEngineError):
    """The run was cancelled externally and stopped at a node boundary."""


class WorkflowValidationError(FlowEngineError):
    """A workflow definition violates structural invariants."""

    def __init__(self, errors: list[str]):
        super().__init__(f"Invalid workflow: {'; '.join(errors)}")
        self.errors = errors


class InvalidExecutionStateError(FlowEngineError):
    """An execution status transition is not allowed."""


# === STORAGE ===


class StorageError(FlowEngineError):
    """The execution store failed to read or write a document."""


class RevisionConflictError(StorageError):
    """A write carried a stale revision token."""

    def __init__(self, doc_id: str, supplied: str | None, current: str | None):
        super().__init__(
            f"Revision conflict for '{doc_id}': supplied {supplied!r}, current {current!r}"
        )
        self.doc_id = doc_id
        self.supplied = supplied
        self.current = current


class ExecutionNotFoundError(StorageError):
    """No execution record exists for the given id."""

    def __init__(self, execution_id: str):
        super().__init__(f"Execution not found: {execution_id}")
        self.execution_id = execution_id


class InvalidExecutionIdError(StorageError, ValueError):
    """An execution id cannot be used as a storage key."""
