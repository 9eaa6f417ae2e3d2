"""Type-tag to handler lookup."""

import logging

from flowengine.errors import UnknownNodeTypeError
from flowengine.handlers.base import NodeHandler
from flowengine.schemas.workflow import NodeType

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """
    Maps node type tags to handler instances.

    Lookup of an unregistered tag raises ``UnknownNodeTypeError``, which the
    retry wrapper treats like any other configuration error: the node fails,
    the engine keeps running.
    """

    def __init__(self):
        self._handlers: dict[str, NodeHandler] = {}

    def register(self, node_type: NodeType | str, handler: NodeHandler) -> None:
        key = str(node_type)
        if key in self._handlers:
            logger.debug(f"Replacing handler for node type '{key}'")
        self._handlers[key] = handler

    def get(self, node_type: NodeType | str, node_id: str | None = None) -> NodeHandler:
        handler = self._handlers.get(str(node_type))
        if handler is None:
            raise UnknownNodeTypeError(str(node_type), node_id=node_id)
        return handler

    def has(self, node_type: NodeType | str) -> bool:
        return str(node_type) in self._handlers

    def registered_types(self) -> list[str]:
        return sorted(self._handlers)

    def missing_types(self) -> list[str]:
        """Known node types with no registered handler."""
        return [t.value for t in NodeType if t.value not in self._handlers]

    def log_coverage(self) -> None:
        missing = self.missing_types()
        if missing:
            logger.warning(f"Missing handlers for node types: {', '.join(missing)}")
        logger.info(
            f"Handler registry initialized: {len(self._handlers)} handlers, "
            f"{len(NodeType)} known node types"
        )

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, node_type: object) -> bool:
        return isinstance(node_type, str) and node_type in self._handlers
