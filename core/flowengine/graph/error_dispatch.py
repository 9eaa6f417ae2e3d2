"""
Error-trigger dispatch.

When a node fails, every ``error_trigger`` node in the workflow (other than
the failed node itself) runs once against a copy of the context that
carries the failure details. Error handlers never retry and never
propagate their own failures.
"""

import logging
from typing import Any

from flowengine.config import EngineConfig
from flowengine.graph.context import (
    ERROR_KEY,
    EXECUTION_ID_KEY,
    FAILED_NODE_KEY,
    WORKFLOW_ID_KEY,
    ExecutionContext,
)
from flowengine.graph.retry import NodePolicy, run_with_timeout
from flowengine.handlers.registry import HandlerRegistry
from flowengine.schemas.execution import LogLevel, WorkflowExecution
from flowengine.schemas.workflow import Node, Workflow

logger = logging.getLogger(__name__)


class ErrorTriggerDispatcher:
    def __init__(self, registry: HandlerRegistry, engine_config: EngineConfig):
        self.registry = registry
        self.engine_config = engine_config

    async def dispatch(
        self,
        workflow: Workflow,
        failed_node: Node,
        error: dict[str, Any],
        context: ExecutionContext,
        execution: WorkflowExecution,
    ) -> dict[str, Any]:
        """
        Run all error handlers for a failure.

        Returns ``{handler_id: result}`` for the handlers that succeeded.
        Handler results live only in the derived context, so they never
        overwrite the run's own variables.
        """
        handlers = [n for n in workflow.error_handler_nodes() if n.id != failed_node.id]
        if not handlers:
            return {}

        derived = context.derive(
            **{
                ERROR_KEY: error,
                FAILED_NODE_KEY: failed_node.summary(),
                WORKFLOW_ID_KEY: workflow.id,
                EXECUTION_ID_KEY: execution.id,
            }
        )

        results: dict[str, Any] = {}
        for handler_node in handlers:
            timeout_ms = NodePolicy.for_node(handler_node, self.engine_config).timeout_ms
            execution.add_log(
                LogLevel.INFO,
                f"Running error handler {handler_node.display_name} for node "
                f"{failed_node.display_name}",
                node_id=handler_node.id,
            )
            try:
                result = await run_with_timeout(
                    self.registry, handler_node, derived, timeout_ms
                )
            except Exception as e:
                execution.add_log(
                    LogLevel.ERROR,
                    f"Error handler {handler_node.display_name} failed: {e}",
                    node_id=handler_node.id,
                )
                logger.error(
                    f"Error handler '{handler_node.id}' failed: {e}",
                    extra={"event": "error_handler_failed", "node_id": handler_node.id},
                )
                continue

            derived.set_result(handler_node.id, result)
            results[handler_node.id] = result
            logger.info(
                f"Error handler '{handler_node.id}' completed",
                extra={"event": "error_handler_completed", "node_id": handler_node.id},
            )
        return results
