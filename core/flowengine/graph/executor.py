"""
Workflow Engine - Walks a workflow graph and records the run.

The engine:
1. Validates the workflow and creates a running execution record
2. Walks the graph depth-first from the trigger node
3. Runs each node through the retry/timeout policy
4. Follows outgoing connections whose guards pass, in declaration order
5. Finalizes and persists the record, which is always returned
"""

import logging
from typing import Any

from flowengine.config import EngineConfig
from flowengine.errors import (
    ExecutionCancelledError,
    RevisionConflictError,
    StorageError,
    WorkflowExecutionError,
    WorkflowValidationError,
)
from flowengine.graph.conditions import evaluate_condition
from flowengine.graph.context import EXECUTION_ID_KEY, WORKFLOW_ID_KEY, ExecutionContext
from flowengine.graph.error_dispatch import ErrorTriggerDispatcher
from flowengine.graph.retry import RetryExecutor, format_stack
from flowengine.handlers import create_default_registry
from flowengine.handlers.registry import HandlerRegistry
from flowengine.observability import set_trace_context
from flowengine.schemas.execution import (
    ExecutionError,
    ExecutionStatus,
    LogLevel,
    WorkflowExecution,
)
from flowengine.schemas.workflow import Node, Workflow
from flowengine.storage.backend import ExecutionStore, InMemoryExecutionStore


class _RunState:
    """Bookkeeping for one walk: how many nodes ran and which ones."""

    def __init__(self):
        self.node_executions = 0
        self.visited: set[str] = set()
        self.path: list[str] = []


class WorkflowEngine:
    """
    Executes workflows and records each run as a WorkflowExecution.

    Example:
        engine = WorkflowEngine(store=FileExecutionStore("~/.flowengine/executions"))
        execution = await engine.execute_workflow(workflow, {"orderId": 42})
        print(execution.status, execution.duration)
    """

    def __init__(
        self,
        store: ExecutionStore | None = None,
        registry: HandlerRegistry | None = None,
        config: EngineConfig | None = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Where execution records are persisted (in-memory by default)
            registry: Node handlers by type tag (all built-ins by default)
            config: Engine defaults; loaded from the config file when omitted
        """
        self.store = store or InMemoryExecutionStore()
        self.registry = registry or create_default_registry()
        self.config = config or EngineConfig()
        self.retry = RetryExecutor(self.registry, self.config)
        self.error_dispatcher = ErrorTriggerDispatcher(self.registry, self.config)
        self.logger = logging.getLogger(__name__)

    async def execute_workflow(
        self,
        workflow: Workflow,
        input: dict[str, Any] | None = None,
    ) -> WorkflowExecution:
        """
        Run a workflow to completion.

        Never raises for node, validation or storage failures; the returned
        record carries a terminal status and, for failures, the error.
        """
        execution = WorkflowExecution(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            status=ExecutionStatus.RUNNING,
        )
        set_trace_context(workflow_id=workflow.id, execution_id=execution.id)
        context = ExecutionContext(input=dict(input or {}))
        context.variables[WORKFLOW_ID_KEY] = workflow.id
        context.variables[EXECUTION_ID_KEY] = execution.id
        state = _RunState()

        self.logger.info(
            f"🚀 Starting workflow: {workflow.name}",
            extra={"event": "workflow_started"},
        )

        try:
            problems = workflow.validate()
            if problems:
                raise WorkflowValidationError(problems)

            try:
                await self.store.put(execution)
            except StorageError as e:
                raise WorkflowExecutionError(
                    f"Failed to persist execution: {e}", workflow_id=workflow.id
                ) from e

            execution.add_log(LogLevel.INFO, "Workflow execution started")
            trigger = workflow.get_node(workflow.trigger)
            await self._execute_node(workflow, trigger, context, execution, state)

        except ExecutionCancelledError:
            if not execution.status.is_terminal:
                execution.complete(ExecutionStatus.CANCELLED)
            execution.add_log(LogLevel.WARN, "Workflow execution cancelled")
            self.logger.warning("⏹ Workflow cancelled", extra={"event": "workflow_cancelled"})

        except Exception as e:
            execution.complete(ExecutionStatus.FAILED)
            execution.error = ExecutionError(
                message=str(e),
                stack=format_stack(e),
                node_id=getattr(e, "node_id", None),
            )
            execution.add_log(LogLevel.ERROR, f"Workflow execution failed: {e}")
            self.logger.error(
                f"✗ Workflow failed: {e}",
                extra={"event": "workflow_failed", "status": "failed"},
            )

        else:
            execution.complete(ExecutionStatus.SUCCESS)
            execution.result = {"path": state.path}
            execution.add_log(
                LogLevel.INFO,
                f"Workflow execution completed successfully in {execution.duration}ms",
            )
            self.logger.info(
                f"✓ Workflow completed: {len(state.path)} node(s) in {execution.duration}ms",
                extra={
                    "event": "workflow_completed",
                    "status": "success",
                    "duration_ms": execution.duration,
                },
            )

        await self._finalize(execution)
        return execution

    async def _execute_node(
        self,
        workflow: Workflow,
        node: Node,
        context: ExecutionContext,
        execution: WorkflowExecution,
        state: _RunState,
    ) -> None:
        """Run one node, then walk its satisfied outgoing connections."""
        if self.config.dedupe_fan_in and node.id in state.visited:
            execution.add_log(
                LogLevel.DEBUG, f"Node {node.display_name} already executed", node_id=node.id
            )
            return

        await self._check_cancelled(execution)

        state.node_executions += 1
        if state.node_executions > self.config.max_node_executions:
            raise WorkflowExecutionError(
                f"Node execution limit of {self.config.max_node_executions} exceeded "
                f"at node {node.display_name}; the graph may contain a cycle",
                workflow_id=workflow.id,
                node_id=node.id,
            )
        state.visited.add(node.id)
        state.path.append(node.id)

        set_trace_context(node_id=node.id)
        execution.add_log(LogLevel.INFO, f"Executing node: {node.display_name}", node_id=node.id)
        self.logger.info(
            f"▶ {node.display_name} ({node.type})",
            extra={"event": "node_started", "node_id": node.id, "node_type": node.type},
        )

        outcome = await self.retry.run(node, context, execution)

        if outcome.success:
            context.set_result(node.id, outcome.result)
            execution.add_log(
                LogLevel.INFO,
                f"Node completed: {node.display_name}",
                node_id=node.id,
                data={"attempts": outcome.attempts, "durationMs": outcome.duration_ms},
            )
        else:
            error = outcome.error_details()
            policy_continue = bool(
                node.execution_config and node.execution_config.continue_on_error
            )
            if policy_continue:
                context.record_failure(error, node.summary())
                await self.error_dispatcher.dispatch(workflow, node, error, context, execution)
                execution.add_log(
                    LogLevel.WARN,
                    f"Continuing after failure of node {node.display_name}",
                    node_id=node.id,
                )
            else:
                await self.error_dispatcher.dispatch(workflow, node, error, context, execution)
                raise WorkflowExecutionError(
                    f"Node execution failed: {node.display_name}: {outcome.error}",
                    workflow_id=workflow.id,
                    node_id=node.id,
                ) from outcome.error

        for connection in workflow.get_outgoing_connections(node.id):
            if connection.condition and not evaluate_condition(connection.condition, context):
                execution.add_log(
                    LogLevel.INFO,
                    f"Skipping connection {connection.source} -> {connection.target} "
                    f"due to condition: {connection.condition}",
                    node_id=node.id,
                )
                continue

            next_node = workflow.get_node(connection.target)
            if next_node is not None:
                await self._execute_node(workflow, next_node, context, execution, state)

    async def _check_cancelled(self, execution: WorkflowExecution) -> None:
        """Stop at a node boundary if the stored record was cancelled externally."""
        try:
            stored = await self.store.get(execution.id)
        except StorageError as e:
            self.logger.warning(f"Could not check cancellation status: {e}")
            return
        if stored is not None and stored.status == ExecutionStatus.CANCELLED:
            execution.merge_stored(stored)
            raise ExecutionCancelledError(f"Execution {execution.id} was cancelled")

    async def _finalize(self, execution: WorkflowExecution) -> None:
        """Persist the terminal record. Failures are logged, never raised."""
        for attempt in (1, 2):
            try:
                await self.store.put(execution)
                return
            except RevisionConflictError as e:
                if attempt == 2:
                    self.logger.error(f"Failed to persist final execution state: {e}")
                    return
                if not await self._adopt_stored_revision(execution):
                    return
            except Exception as e:
                self.logger.error(f"Failed to persist final execution state: {e}")
                return

    async def _adopt_stored_revision(self, execution: WorkflowExecution) -> bool:
        """Reload the stored revision before retrying a conflicted final write."""
        try:
            stored = await self.store.get(execution.id)
        except Exception as e:
            self.logger.error(f"Failed to reload execution after conflict: {e}")
            return False

        if stored is None:
            execution.rev = None
        elif execution.merge_stored(stored):
            execution.add_log(LogLevel.WARN, "Execution was cancelled externally")
        return True
