"""Shared engine configuration utilities.

Centralises reading of ~/.flowengine/configuration.json so that the engine,
the CLI and every node handler share one implementation. Credentials for
integrations are looked up in the process environment first and then in a
``.env`` file in the working directory.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_RETRY_DELAY_MS = 1_000
DEFAULT_MAX_NODE_EXECUTIONS = 500

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWENGINE_HOME = Path.home() / ".flowengine"
FLOWENGINE_CONFIG_FILE = FLOWENGINE_HOME / "configuration.json"


def get_config_path() -> Path:
    """Return the configuration file path, honouring FLOWENGINE_CONFIG_FILE."""
    override = os.environ.get("FLOWENGINE_CONFIG_FILE")
    return Path(override) if override else FLOWENGINE_CONFIG_FILE


def get_engine_config() -> dict[str, Any]:
    """Load engine configuration from the JSON config file."""
    config_path = get_config_path()
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _execution_section() -> dict[str, Any]:
    return get_engine_config().get("execution", {})


def get_default_timeout_ms() -> int:
    """Return the node timeout used when a node does not configure one."""
    return int(_execution_section().get("default_timeout_ms", DEFAULT_TIMEOUT_MS))


def get_default_retry_delay_ms() -> int:
    """Return the delay between node retries when a node does not configure one."""
    return int(_execution_section().get("default_retry_delay_ms", DEFAULT_RETRY_DELAY_MS))


def get_max_node_executions() -> int:
    return int(_execution_section().get("max_node_executions", DEFAULT_MAX_NODE_EXECUTIONS))


def get_dedupe_fan_in() -> bool:
    return bool(_execution_section().get("dedupe_fan_in", False))


def get_storage_path() -> Path:
    """Return the directory where execution records are stored."""
    configured = get_engine_config().get("storage", {}).get("path")
    if configured:
        return Path(configured).expanduser()
    return FLOWENGINE_HOME / "executions"


def get_credential(env_var: str) -> str | None:
    """
    Look up an integration credential.

    The process environment wins; a ``.env`` file in the working directory
    is the fallback. Returns None when neither defines the variable.
    """
    value = os.environ.get(env_var)
    if value:
        return value
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        return dotenv_values(env_file).get(env_var) or None
    return None


# ---------------------------------------------------------------------------
# EngineConfig – shared by the engine and the CLI
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine runtime configuration loaded from ~/.flowengine/configuration.json."""

    default_timeout_ms: int = field(default_factory=get_default_timeout_ms)
    default_retry_delay_ms: int = field(default_factory=get_default_retry_delay_ms)
    max_node_executions: int = field(default_factory=get_max_node_executions)
    # When True a node reached through several paths runs only once per run
    dedupe_fan_in: bool = field(default_factory=get_dedupe_fan_in)
    storage_path: Path = field(default_factory=get_storage_path)
