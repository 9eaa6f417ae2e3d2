"""Trigger handlers: the nodes a run starts from, plus the error trigger."""

import logging
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field

from flowengine.graph.context import (
    ERROR_KEY,
    EXECUTION_ID_KEY,
    FAILED_NODE_KEY,
    WORKFLOW_ID_KEY,
    ExecutionContext,
)
from flowengine.handlers.base import HandlerConfig, NodeHandler
from flowengine.schemas.workflow import Node

logger = logging.getLogger(__name__)


class WebhookConfig(HandlerConfig):
    method: str = "POST"
    path: str = "/webhook"


class WebhookHandler(NodeHandler):
    """Passes the caller's payload through as the trigger result."""

    config_model = WebhookConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        return {
            "triggered": True,
            "method": config.method.upper(),
            "path": config.path,
            "timestamp": datetime.now().isoformat(),
            "payload": context.input,
        }


class ScheduleConfig(HandlerConfig):
    schedule: str = Field(min_length=1, description="Cron expression")
    timezone: str = "UTC"


class ScheduleHandler(NodeHandler):
    config_model = ScheduleConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        return {
            "triggered": True,
            "schedule": config.schedule,
            "timezone": config.timezone,
            "timestamp": datetime.now().isoformat(),
        }


class ErrorTriggerConfig(HandlerConfig):
    failed_node_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("failedNodeIds", "triggerOnNodes", "failed_node_ids"),
    )
    error_types: list[str] = Field(default_factory=list)


class ErrorTriggerHandler(NodeHandler):
    """
    Summarises the failure the engine stashed in ``$error`` / ``$failedNode``.

    ``failed_node_ids`` and ``error_types`` narrow which failures the node
    reacts to; a filtered-out failure returns ``{"triggered": False}``.
    """

    config_model = ErrorTriggerConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        error = context.variables.get(ERROR_KEY) or {}
        failed_node = context.variables.get(FAILED_NODE_KEY) or {}

        if config.failed_node_ids and failed_node.get("id") not in config.failed_node_ids:
            logger.debug(f"Error trigger '{node.id}' ignores failure of '{failed_node.get('id')}'")
            return {"triggered": False}
        if config.error_types and error.get("type") not in config.error_types:
            return {"triggered": False}

        logger.info(f"Error trigger '{node.id}' handling failure of node '{failed_node.get('id')}'")
        return {
            "triggered": True,
            "timestamp": datetime.now().isoformat(),
            "workflowId": context.variables.get(WORKFLOW_ID_KEY),
            "executionId": context.variables.get(EXECUTION_ID_KEY),
            "error": {
                "message": error.get("message", "Unknown error"),
                "type": error.get("type", "Exception"),
                "stack": error.get("stack"),
            },
            "failedNode": {
                "id": failed_node.get("id"),
                "name": failed_node.get("name"),
                "type": failed_node.get("type"),
            },
        }
