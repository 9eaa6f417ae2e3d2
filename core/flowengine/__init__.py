"""
flowengine - A workflow automation engine.

Workflows are graphs of nodes (triggers, actions, conditions, loops) joined
by optionally guarded connections. The engine walks the graph from the
trigger, runs every node through its retry/timeout policy, shares results
between nodes through one mutable context per run, and records each run
as a durable execution record.

Quick start:
    from flowengine import Workflow, WorkflowEngine

    workflow = Workflow.model_validate(document)
    execution = await WorkflowEngine().execute_workflow(workflow, {"orderId": 42})
"""

from flowengine.config import EngineConfig
from flowengine.errors import (
    ConfigurationError,
    ExecutionCancelledError,
    ExecutionNotFoundError,
    FlowEngineError,
    InvalidExecutionStateError,
    NodeExecutionError,
    NodeTimeoutError,
    RevisionConflictError,
    StorageError,
    UnknownNodeTypeError,
    WorkflowExecutionError,
    WorkflowValidationError,
)
from flowengine.graph.context import ExecutionContext
from flowengine.graph.executor import WorkflowEngine
from flowengine.handlers import HandlerRegistry, NodeHandler, create_default_registry
from flowengine.schemas import (
    Connection,
    ExecutionConfig,
    ExecutionStatus,
    Node,
    NodeType,
    Workflow,
    WorkflowExecution,
)
from flowengine.services import ExecutionService
from flowengine.storage import ExecutionStore, FileExecutionStore, InMemoryExecutionStore

__version__ = "0.1.0"

__all__ = [
    # Engine
    "WorkflowEngine",
    "EngineConfig",
    "ExecutionContext",
    # Schemas
    "Workflow",
    "Node",
    "NodeType",
    "Connection",
    "ExecutionConfig",
    "WorkflowExecution",
    "ExecutionStatus",
    # Handlers
    "NodeHandler",
    "HandlerRegistry",
    "create_default_registry",
    # Storage and services
    "ExecutionStore",
    "InMemoryExecutionStore",
    "FileExecutionStore",
    "ExecutionService",
    # Errors
    "FlowEngineError",
    "ConfigurationError",
    "UnknownNodeTypeError",
    "NodeExecutionError",
    "NodeTimeoutError",
    "WorkflowExecutionError",
    "WorkflowValidationError",
    "ExecutionCancelledError",
    "InvalidExecutionStateError",
    "StorageError",
    "RevisionConflictError",
    "ExecutionNotFoundError",
]
