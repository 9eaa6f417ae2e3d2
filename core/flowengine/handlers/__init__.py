"""
Node handlers and the registry that dispatches to them.

``create_default_registry()`` returns a registry with every built-in
handler registered under its ``NodeType`` tag.
"""

from flowengine.handlers.ai_generate import AIGenerateHandler
from flowengine.handlers.base import HandlerConfig, NodeHandler
from flowengine.handlers.data import CSVExportHandler, CSVImportHandler
from flowengine.handlers.http_request import HTTPRequestHandler
from flowengine.handlers.logic import ConditionHandler, DelayHandler, LoopHandler, TransformHandler
from flowengine.handlers.messaging import (
    DiscordHandler,
    SendEmailHandler,
    SendSMSHandler,
    SlackHandler,
    TelegramHandler,
)
from flowengine.handlers.registry import HandlerRegistry
from flowengine.handlers.triggers import ErrorTriggerHandler, ScheduleHandler, WebhookHandler
from flowengine.schemas.workflow import NodeType


def create_default_registry() -> HandlerRegistry:
    """Build a registry with all built-in handlers."""
    registry = HandlerRegistry()

    # Triggers
    registry.register(NodeType.WEBHOOK, WebhookHandler())
    registry.register(NodeType.SCHEDULE, ScheduleHandler())
    registry.register(NodeType.ERROR_TRIGGER, ErrorTriggerHandler())

    # Actions
    registry.register(NodeType.HTTP_REQUEST, HTTPRequestHandler())
    registry.register(NodeType.SEND_SMS, SendSMSHandler())
    registry.register(NodeType.SEND_EMAIL, SendEmailHandler())

    # Communication
    registry.register(NodeType.SLACK, SlackHandler())
    registry.register(NodeType.DISCORD, DiscordHandler())
    registry.register(NodeType.TELEGRAM, TelegramHandler())

    # Logic
    registry.register(NodeType.CONDITION, ConditionHandler())
    registry.register(NodeType.LOOP, LoopHandler())
    registry.register(NodeType.DELAY, DelayHandler())

    # Data
    registry.register(NodeType.TRANSFORM, TransformHandler())
    registry.register(NodeType.CSV_IMPORT, CSVImportHandler())
    registry.register(NodeType.CSV_EXPORT, CSVExportHandler())

    # AI
    registry.register(NodeType.AI_GENERATE, AIGenerateHandler())

    registry.log_coverage()
    return registry


__all__ = [
    "HandlerConfig",
    "HandlerRegistry",
    "NodeHandler",
    "create_default_registry",
]
