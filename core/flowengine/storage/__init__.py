"""Durable storage for execution records."""

from flowengine.storage.backend import (
    ExecutionStore,
    FileExecutionStore,
    InMemoryExecutionStore,
    next_revision,
)

__all__ = ["ExecutionStore", "FileExecutionStore", "InMemoryExecutionStore", "next_revision"]
