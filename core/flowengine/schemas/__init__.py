"""Schema definitions for workflows and their executions."""

from flowengine.schemas.execution import (
    ExecutionError,
    ExecutionLog,
    ExecutionStatus,
    LogLevel,
    WorkflowExecution,
    generate_execution_id,
)
from flowengine.schemas.workflow import (
    Connection,
    ExecutionConfig,
    Node,
    NodeType,
    Workflow,
    WorkflowStatus,
)

__all__ = [
    "Connection",
    "ExecutionConfig",
    "ExecutionError",
    "ExecutionLog",
    "ExecutionStatus",
    "LogLevel",
    "Node",
    "NodeType",
    "Workflow",
    "WorkflowExecution",
    "WorkflowStatus",
    "generate_execution_id",
]
