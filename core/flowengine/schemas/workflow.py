"""
Workflow Schema - The definition a run walks.

A workflow is a list of nodes, a list of directed connections between them
and one designated trigger node where every run starts. Definitions are
stored as camelCase documents; the models accept that shape (and a few
legacy spellings) and expose snake_case attributes.
"""

import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WorkflowStatus(StrEnum):
    """Lifecycle status of a workflow definition."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"


class NodeType(StrEnum):
    """Type tags with a built-in handler."""

    # Triggers
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    ERROR_TRIGGER = "error_trigger"

    # Actions
    HTTP_REQUEST = "http_request"
    SEND_SMS = "send_sms"
    SEND_EMAIL = "send_email"

    # Communication
    SLACK = "slack"
    DISCORD = "discord"
    TELEGRAM = "telegram"

    # Logic
    CONDITION = "condition"
    LOOP = "loop"
    DELAY = "delay"

    # Data
    TRANSFORM = "transform"
    CSV_IMPORT = "csv_import"
    CSV_EXPORT = "csv_export"

    # AI
    AI_GENERATE = "ai_generate"


class _DocumentModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class ExecutionConfig(_DocumentModel):
    """Per-node retry, timeout and error policy. Unset values use engine defaults."""

    retries: int = Field(default=0, ge=0, description="Extra attempts after the first")
    retry_delay_ms: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("retryDelayMs", "retryDelay", "retry_delay_ms"),
        serialization_alias="retryDelayMs",
    )
    timeout_ms: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("timeoutMs", "timeout", "timeout_ms"),
        serialization_alias="timeoutMs",
    )
    continue_on_error: bool = False
    # Advisory only; the walker always runs siblings sequentially
    parallel: bool = False


class Node(_DocumentModel):
    """One step in a workflow graph."""

    id: str
    type: str = Field(description="Type tag selecting the handler, usually a NodeType value")
    name: str = ""
    description: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    execution_config: ExecutionConfig | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def is_error_handler(self) -> bool:
        return self.type == NodeType.ERROR_TRIGGER

    def summary(self) -> dict[str, str]:
        """Reference stored in ``$failedNode`` when this node fails."""
        return {"id": self.id, "name": self.display_name, "type": self.type}


class Connection(_DocumentModel):
    """Directed edge between two nodes, optionally guarded by a condition."""

    source: str = Field(alias="from", description="Source node ID")
    target: str = Field(alias="to", description="Target node ID")
    condition: str | None = Field(
        default=None,
        description="Guard expression: JSON comparison object or infix string",
    )

    @field_validator("condition", mode="before")
    @classmethod
    def _normalize_condition(cls, value: Any) -> Any:
        # Guards stored as objects are kept in their JSON string form
        if isinstance(value, dict):
            return json.dumps(value)
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Workflow(_DocumentModel):
    """
    A workflow definition.

    Example:
        Workflow(
            id="wf-orders",
            name="Order alerts",
            trigger="hook",
            nodes=[
                Node(id="hook", type="webhook"),
                Node(id="notify", type="slack", config={"channel": "#ops"}),
            ],
            connections=[Connection(source="hook", target="notify")],
        )
    """

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str
    description: str = ""
    status: WorkflowStatus = WorkflowStatus.DRAFT
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    trigger: str = Field(description="ID of the node every run starts from")
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("trigger", mode="before")
    @classmethod
    def _trigger_id(cls, value: Any) -> Any:
        # Stored documents may embed the whole trigger node
        if isinstance(value, dict):
            return value.get("id")
        if isinstance(value, Node):
            return value.id
        return value

    def get_node(self, node_id: str) -> Node | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_connections(self, node_id: str) -> list[Connection]:
        """Connections leaving a node, in declaration order."""
        return [c for c in self.connections if c.source == node_id]

    def get_incoming_connections(self, node_id: str) -> list[Connection]:
        return [c for c in self.connections if c.target == node_id]

    def error_handler_nodes(self) -> list[Node]:
        """Nodes that run whenever another node fails."""
        return [n for n in self.nodes if n.is_error_handler]

    def validate(self) -> list[str]:
        """Validate the workflow structure. Returns a list of problems, empty if valid."""
        errors = []

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen.add(node.id)

        if not self.trigger:
            errors.append("Workflow has no trigger node")
        elif self.get_node(self.trigger) is None:
            errors.append(f"Trigger node '{self.trigger}' not found")

        for index, conn in enumerate(self.connections):
            if self.get_node(conn.source) is None:
                errors.append(f"Connection {index} references missing source '{conn.source}'")
            if self.get_node(conn.target) is None:
                errors.append(f"Connection {index} references missing target '{conn.target}'")

        return errors

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
