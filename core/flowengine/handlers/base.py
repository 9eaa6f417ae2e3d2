"""
Node handler contract.

A handler executes one node type. It receives the node and the run's
shared context, resolves ``{{...}}`` placeholders in the node's config,
validates the result against its own pydantic ``config_model`` and does
its work. Handlers return a result (stored as ``variables[node.id]``) and
raise on failure; they never catch their own errors to hide them.

Blocking HTTP clients are run with ``asyncio.to_thread`` so one slow call
never stalls other runs on the same event loop.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from flowengine.config import get_credential
from flowengine.errors import ConfigurationError, NodeExecutionError
from flowengine.graph.context import ExecutionContext
from flowengine.graph.expressions import resolve_object
from flowengine.schemas.workflow import Node


class HandlerConfig(BaseModel):
    """Base for handler config models. Accepts camelCase and snake_case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class NodeHandler(ABC):
    """Base class for all node handlers."""

    config_model: ClassVar[type[HandlerConfig]] = HandlerConfig
    # Handlers that interpret placeholders themselves turn this off
    resolve_placeholders: ClassVar[bool] = True

    def load_config(self, node: Node, context: ExecutionContext) -> Any:
        """Resolve placeholders in ``node.config`` and validate it."""
        if self.resolve_placeholders:
            resolved = resolve_object(node.config, context)
        else:
            resolved = node.config
        try:
            return self.config_model.model_validate(resolved)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(
                f"Invalid config for node '{node.id}' ({node.type}): {problems}",
                node_id=node.id,
            ) from e

    @abstractmethod
    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        """Run the node and return its result."""


def require_credential(value: str | None, env_var: str, node: Node, what: str) -> str:
    """Return a credential from the node config or the environment, or fail the node."""
    credential = value or get_credential(env_var)
    if not credential:
        raise ConfigurationError(
            f"{what} not configured. "
            f"Set it in the node config or the {env_var} environment variable",
            node_id=node.id,
        )
    return credential


def error_detail(response: httpx.Response, key: str = "message") -> str:
    """Best-effort extraction of an error message from an API response."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        detail = body.get(key) or body.get("error") or body.get("description")
        if isinstance(detail, dict):
            detail = detail.get("message") or detail
        if detail:
            return str(detail)
    return response.text


def raise_for_api_error(response: httpx.Response, service: str, node_id: str | None = None) -> None:
    """Raise a NodeExecutionError for any non-2xx response."""
    if response.status_code == 401:
        raise NodeExecutionError(f"{service}: invalid or expired credentials", node_id=node_id)
    if response.status_code == 429:
        raise NodeExecutionError(f"{service}: rate limit exceeded", node_id=node_id)
    if response.status_code >= 400:
        raise NodeExecutionError(
            f"{service} API error (HTTP {response.status_code}): {error_detail(response)}",
            node_id=node_id,
        )
