"""
HTTP Request handler - call an arbitrary HTTP endpoint.

Non-2xx responses fail the node. JSON responses are returned parsed, all
others as text.
"""

import asyncio
import json
from typing import Any, Literal

import httpx
from pydantic import Field

from flowengine.errors import NodeExecutionError
from flowengine.graph.context import ExecutionContext
from flowengine.handlers.base import HandlerConfig, NodeHandler
from flowengine.schemas.workflow import Node


class HTTPRequestConfig(HandlerConfig):
    url: str = Field(min_length=1)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"] = "GET"
    headers: dict[str, Any] = Field(default_factory=dict)
    query: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    timeout_seconds: float = Field(default=30.0, gt=0)


class _HTTPClient:
    """Internal client wrapping a single blocking request."""

    def request(self, config: HTTPRequestConfig) -> httpx.Response:
        kwargs: dict[str, Any] = {
            "headers": {key: str(value) for key, value in config.headers.items()},
            "timeout": config.timeout_seconds,
        }
        if config.query:
            kwargs["params"] = config.query
        if config.body not in (None, "") and config.method not in ("GET", "HEAD"):
            if isinstance(config.body, str):
                kwargs["content"] = config.body
            else:
                kwargs["content"] = json.dumps(config.body)
                kwargs["headers"].setdefault("Content-Type", "application/json")
        return httpx.request(config.method, config.url, **kwargs)


class HTTPRequestHandler(NodeHandler):
    config_model = HTTPRequestConfig

    def __init__(self, client: _HTTPClient | None = None):
        self._client = client or _HTTPClient()

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        try:
            response = await asyncio.to_thread(self._client.request, config)
        except httpx.TimeoutException as e:
            raise NodeExecutionError(
                f"HTTP request to {config.url} timed out", node_id=node.id
            ) from e
        except httpx.RequestError as e:
            raise NodeExecutionError(f"HTTP request failed: {e}", node_id=node.id) from e

        if not response.is_success:
            raise NodeExecutionError(
                f"HTTP request failed: {response.status_code} {response.reason_phrase}",
                node_id=node.id,
            )

        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text
