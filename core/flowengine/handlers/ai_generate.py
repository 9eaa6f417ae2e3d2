"""
AI Generate handler - text generation with provider failover.

Providers are tried in order: Gemini, then OpenRouter. If neither is
configured or both fail, the node still succeeds with a canned fallback
text so a flaky model provider never breaks a workflow. The result
reports which provider answered and how long it took.
"""

import asyncio
import logging
import time
from typing import Any

import httpx
from pydantic import Field

from flowengine.config import get_credential
from flowengine.errors import NodeExecutionError
from flowengine.graph.context import ExecutionContext
from flowengine.handlers.base import HandlerConfig, NodeHandler, raise_for_api_error
from flowengine.schemas.workflow import Node

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_OPENROUTER_MODEL = "openrouter/auto"


class AIGenerateConfig(HandlerConfig):
    prompt: str = Field(min_length=1)
    system_prompt: str | None = None
    model: str | None = None
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=1024, gt=0)


class _GeminiClient:
    def __init__(self, api_key: str):
        self._api_key = api_key

    def generate(self, config: AIGenerateConfig) -> str:
        model = config.model or DEFAULT_GEMINI_MODEL
        prompt = config.prompt
        if config.system_prompt:
            prompt = f"{config.system_prompt}\n\n{config.prompt}"
        response = httpx.post(
            f"{GEMINI_API_BASE}/{model}:generateContent",
            params={"key": self._api_key},
            json={
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": config.temperature,
                    "maxOutputTokens": config.max_tokens,
                },
            },
            timeout=60.0,
        )
        raise_for_api_error(response, "Gemini")
        try:
            parts = response.json()["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise NodeExecutionError("Gemini returned no candidates") from e
        return "".join(part.get("text", "") for part in parts)


class _OpenRouterClient:
    def __init__(self, api_key: str):
        self._api_key = api_key

    def generate(self, config: AIGenerateConfig) -> str:
        messages = []
        if config.system_prompt:
            messages.append({"role": "system", "content": config.system_prompt})
        messages.append({"role": "user", "content": config.prompt})

        response = httpx.post(
            OPENROUTER_CHAT_URL,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "model": DEFAULT_OPENROUTER_MODEL,
                "messages": messages,
                "temperature": config.temperature,
                "max_tokens": config.max_tokens,
            },
            timeout=60.0,
        )
        raise_for_api_error(response, "OpenRouter")
        try:
            return response.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise NodeExecutionError("OpenRouter returned no choices") from e


def fallback_text(prompt: str) -> str:
    return f'[AI temporarily unavailable] Your prompt was: "{prompt[:100]}..."'


class AIGenerateHandler(NodeHandler):
    config_model = AIGenerateConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        start = time.perf_counter()

        provider = "fallback"
        model = config.model or DEFAULT_GEMINI_MODEL
        text: str | None = None

        gemini_key = get_credential("GEMINI_API_KEY")
        if gemini_key:
            try:
                text = await asyncio.to_thread(_GeminiClient(gemini_key).generate, config)
                provider = "gemini"
            except (NodeExecutionError, httpx.HTTPError, ValueError) as e:
                logger.warning(f"Gemini failed, trying OpenRouter: {e}")

        if text is None:
            openrouter_key = get_credential("OPENROUTER_API_KEY")
            if openrouter_key:
                try:
                    text = await asyncio.to_thread(
                        _OpenRouterClient(openrouter_key).generate, config
                    )
                    provider = "openrouter"
                    model = DEFAULT_OPENROUTER_MODEL
                except (NodeExecutionError, httpx.HTTPError, ValueError) as e:
                    logger.warning(f"OpenRouter failed, using fallback: {e}")

        if text is None:
            text = fallback_text(config.prompt)
            model = "none"

        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(f"AI generate completed via {provider} in {latency_ms}ms")
        return {
            "text": text,
            "prompt": config.prompt,
            "model": model,
            "provider": provider,
            "latency_ms": latency_ms,
        }
