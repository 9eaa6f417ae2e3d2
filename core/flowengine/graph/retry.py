"""
Per-node retry and timeout policy.

Every attempt looks the handler up, then awaits it under the node's
timeout. Failed attempts are written to the execution log at ``warn``
level; once attempts run out a single ``error`` entry records the
terminal failure. Configuration errors are not special-cased: they fail
every attempt the same way and exhaust the loop like any other error.
"""

import asyncio
import logging
import time
import traceback
from dataclasses import dataclass
from typing import Any

from flowengine.config import EngineConfig
from flowengine.errors import NodeTimeoutError
from flowengine.graph.context import ExecutionContext
from flowengine.handlers.registry import HandlerRegistry
from flowengine.schemas.execution import LogLevel, WorkflowExecution
from flowengine.schemas.workflow import ExecutionConfig, Node

logger = logging.getLogger(__name__)


@dataclass
class NodePolicy:
    """Effective retry/timeout settings for one node, with engine defaults filled in."""

    max_attempts: int
    retry_delay_ms: int
    timeout_ms: int
    continue_on_error: bool

    @classmethod
    def for_node(cls, node: Node, engine_config: EngineConfig) -> "NodePolicy":
        config = node.execution_config or ExecutionConfig()
        return cls(
            max_attempts=config.retries + 1,
            retry_delay_ms=(
                config.retry_delay_ms
                if config.retry_delay_ms is not None
                else engine_config.default_retry_delay_ms
            ),
            timeout_ms=(
                config.timeout_ms
                if config.timeout_ms is not None
                else engine_config.default_timeout_ms
            ),
            continue_on_error=config.continue_on_error,
        )


@dataclass
class NodeOutcome:
    """What happened when a node went through the retry loop."""

    success: bool
    attempts: int
    result: Any = None
    error: BaseException | None = None
    duration_ms: int = 0

    def error_details(self) -> dict[str, Any]:
        """Describe the failure the way ``$error`` exposes it to downstream nodes."""
        if self.error is None:
            return {}
        return {
            "message": str(self.error),
            "type": type(self.error).__name__,
            "stack": format_stack(self.error),
        }


def format_stack(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


async def run_with_timeout(
    registry: HandlerRegistry,
    node: Node,
    context: ExecutionContext,
    timeout_ms: int,
) -> Any:
    """Resolve the node's handler and run it once, bounded by ``timeout_ms``."""
    handler = registry.get(node.type, node_id=node.id)
    try:
        return await asyncio.wait_for(handler.execute(node, context), timeout=timeout_ms / 1000)
    except TimeoutError as e:
        raise NodeTimeoutError(node.id, timeout_ms) from e


class RetryExecutor:
    """
    Runs a node with its retry and timeout policy.

    Example:
        retry = RetryExecutor(registry, EngineConfig())
        outcome = await retry.run(node, context, execution)
        if outcome.success:
            context.set_result(node.id, outcome.result)
    """

    def __init__(self, registry: HandlerRegistry, engine_config: EngineConfig):
        self.registry = registry
        self.engine_config = engine_config

    async def run(
        self,
        node: Node,
        context: ExecutionContext,
        execution: WorkflowExecution,
    ) -> NodeOutcome:
        policy = NodePolicy.for_node(node, self.engine_config)
        start = time.perf_counter()
        last_error: BaseException | None = None
        attempt = 0

        while attempt < policy.max_attempts:
            attempt += 1
            try:
                result = await run_with_timeout(self.registry, node, context, policy.timeout_ms)
            except Exception as e:
                last_error = e
                execution.add_log(
                    LogLevel.WARN,
                    f"Attempt {attempt}/{policy.max_attempts} failed for node "
                    f"{node.display_name}: {e}",
                    node_id=node.id,
                    data={"attempt": attempt, "errorType": type(e).__name__},
                )
                logger.warning(
                    f"Attempt {attempt}/{policy.max_attempts} failed: {e}",
                    extra={"event": "node_attempt_failed", "node_id": node.id, "attempt": attempt},
                )

                if attempt < policy.max_attempts:
                    await asyncio.sleep(policy.retry_delay_ms / 1000)
                continue

            duration_ms = int((time.perf_counter() - start) * 1000)
            return NodeOutcome(
                success=True, attempts=attempt, result=result, duration_ms=duration_ms
            )

        duration_ms = int((time.perf_counter() - start) * 1000)
        execution.add_log(
            LogLevel.ERROR,
            f"Node failed after {attempt} attempt(s): {last_error}",
            node_id=node.id,
        )
        logger.error(
            f"Node {node.id} failed after {attempt} attempt(s): {last_error}",
            extra={"event": "node_failed", "node_id": node.id, "duration_ms": duration_ms},
        )
        return NodeOutcome(
            success=False, attempts=attempt, error=last_error, duration_ms=duration_ms
        )
