"""
Logging setup for workflow runs.

Run ids travel in a ContextVar rather than being passed to every log call.
The engine stores them when a run starts and again for each node, so a
plain ``logger.info()`` inside a handler is tagged without extra work:

    WorkflowEngine.execute_workflow()   workflow_id, execution_id
    WorkflowEngine._execute_node()      node_id
    NodeHandler.execute()               inherits all three
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Task-local: runs executing side by side keep their own ids
trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

# Record attributes (set through ``extra=``) that are copied into JSON lines
EXTRA_FIELDS = ("event", "node_id", "node_type", "attempt", "duration_ms", "status")

_LEVEL_COLORS = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[35m",
}
_RESET = "\x1b[0m"

# Libraries that log each request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore")


def strip_ansi_codes(text: str) -> str:
    """Drop terminal color sequences."""
    return _ANSI.sub("", text)


def _clean(value: Any) -> Any:
    return strip_ansi_codes(value) if isinstance(value, str) else value


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: base fields, then trace ids, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **get_trace_context(),
        }
        entry.update(
            (field, _clean(getattr(record, field)))
            for field in EXTRA_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


def _trace_prefix(record: logging.LogRecord) -> str:
    ids = get_trace_context()
    node_id = getattr(record, "node_id", None) or ids.get("node_id")
    tags = [
        f"{label}:{value}"
        for label, value in (
            ("wf", ids.get("workflow_id")),
            ("exec", (ids.get("execution_id") or "")[-8:]),
            ("node", node_id),
        )
        if value
    ]
    return f"[{' | '.join(tags)}] " if tags else ""


class HumanReadableFormatter(logging.Formatter):
    """Colored single-line output for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelno, "")
        event = getattr(record, "event", None)
        suffix = f" [{event}]" if event is not None else ""

        text = (
            f"{color}[{record.levelname:<8}]{_RESET} "
            f"{_trace_prefix(record)}{record.getMessage()}{suffix}"
        )
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def _select_format(requested: str) -> str:
    if requested != "auto":
        return requested
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single stream handler on the root logger.

    ``format`` is ``"json"``, ``"human"`` or ``"auto"``. Auto means JSON when
    ``LOG_FORMAT=json`` or ``ENV=production`` and human output otherwise.
    """
    chosen = _select_format(format)
    if chosen == "json":
        formatter: logging.Formatter = StructuredFormatter()
        os.environ["NO_COLOR"] = "1"
    else:
        formatter = HumanReadableFormatter()

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [stream]
    root.setLevel(level.upper())

    for name in _NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.handlers.clear()
        noisy.propagate = True
        noisy.setLevel(logging.WARNING)


def set_trace_context(**fields: Any) -> None:
    """Merge ``fields`` into the ids attached to this task's log lines."""
    trace_context.set({**(trace_context.get() or {}), **fields})


def get_trace_context() -> dict:
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
