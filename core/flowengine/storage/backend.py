"""
Execution record storage with optimistic revisioning.

Every stored document carries a ``_rev`` token of the form ``N-<hex>``.
A write must supply the token it last read (or none, for a new record);
a stale token raises ``RevisionConflictError`` instead of silently
overwriting a concurrent change. Read-modify-write is serialized per
store with an ``asyncio.Lock``.

Layout of the file store:
{base_path}/
  {execution_id}.json
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from flowengine.errors import (
    ExecutionNotFoundError,
    InvalidExecutionIdError,
    RevisionConflictError,
    StorageError,
)
from flowengine.schemas.execution import ExecutionStatus, WorkflowExecution
from flowengine.utils.io import atomic_write

logger = logging.getLogger(__name__)


def next_revision(current: str | None) -> str:
    """Return the revision that follows ``current`` (``1-...`` for a new document)."""
    generation = 0
    if current:
        prefix, _, _ = current.partition("-")
        generation = int(prefix) if prefix.isdigit() else 0
    return f"{generation + 1}-{uuid.uuid4().hex}"


class ExecutionStore(ABC):
    """
    Base class for execution stores.

    Subclasses provide raw document access; this class owns revision
    checks, locking and model conversion.
    """

    def __init__(self):
        self._lock = asyncio.Lock()

    # === RAW DOCUMENT ACCESS ===

    @abstractmethod
    async def _load(self, execution_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def _save(self, execution_id: str, document: dict[str, Any]) -> None: ...

    @abstractmethod
    async def _remove(self, execution_id: str) -> None: ...

    @abstractmethod
    async def _load_all(self) -> list[dict[str, Any]]: ...

    # === PUBLIC API ===

    async def get(self, execution_id: str) -> WorkflowExecution | None:
        """Load an execution, or None if it does not exist."""
        document = await self._load(execution_id)
        if document is None:
            return None
        return WorkflowExecution.from_document(document)

    async def put(self, execution: WorkflowExecution) -> str:
        """
        Store an execution and return its new revision.

        ``execution.rev`` must match the stored revision (None for a new
        record). On success ``execution.rev`` is updated in place.
        """
        async with self._lock:
            existing = await self._load(execution.id)
            current = existing.get("_rev") if existing else None
            if execution.rev != current:
                raise RevisionConflictError(execution.id, execution.rev, current)

            rev = next_revision(current)
            document = execution.to_document()
            document["_rev"] = rev
            await self._save(execution.id, document)

        execution.rev = rev
        logger.debug(f"Stored execution {execution.id} at revision {rev}")
        return rev

    async def delete(self, execution_id: str, rev: str | None) -> None:
        """Delete an execution; ``rev`` must match the stored revision."""
        async with self._lock:
            existing = await self._load(execution_id)
            if existing is None:
                raise ExecutionNotFoundError(execution_id)
            current = existing.get("_rev")
            if rev != current:
                raise RevisionConflictError(execution_id, rev, current)
            await self._remove(execution_id)
        logger.debug(f"Deleted execution {execution_id}")

    async def find(
        self,
        workflow_id: str | None = None,
        status: ExecutionStatus | str | None = None,
    ) -> list[WorkflowExecution]:
        """Return matching executions, newest first."""
        executions = []
        for document in await self._load_all():
            if document.get("type", "execution") != "execution":
                continue
            if workflow_id and document.get("workflowId") != workflow_id:
                continue
            if status and document.get("status") != str(status):
                continue
            executions.append(WorkflowExecution.from_document(document))

        executions.sort(key=lambda e: e.started_at, reverse=True)
        return executions


class InMemoryExecutionStore(ExecutionStore):
    """Process-local store, used by tests and one-off runs."""

    def __init__(self):
        super().__init__()
        self._documents: dict[str, dict[str, Any]] = {}

    async def _load(self, execution_id: str) -> dict[str, Any] | None:
        document = self._documents.get(execution_id)
        # Hand out copies so callers never mutate stored state
        return json.loads(json.dumps(document)) if document is not None else None

    async def _save(self, execution_id: str, document: dict[str, Any]) -> None:
        self._documents[execution_id] = document

    async def _remove(self, execution_id: str) -> None:
        self._documents.pop(execution_id, None)

    async def _load_all(self) -> list[dict[str, Any]]:
        return [json.loads(json.dumps(doc)) for doc in self._documents.values()]


class FileExecutionStore(ExecutionStore):
    """One JSON document per execution, written atomically."""

    def __init__(self, base_path: str | Path):
        super().__init__()
        self.base_path = Path(base_path)

    def _validate_key(self, key: str) -> None:
        """
        Validate an execution id before using it as a file name.

        Raises:
            InvalidExecutionIdError: If the id is empty or could escape the store directory
        """
        if not key or key.strip() == "":
            raise InvalidExecutionIdError("Execution id cannot be empty")

        if "/" in key or "\\" in key:
            raise InvalidExecutionIdError(
                f"Invalid execution id {key!r}: path separators not allowed"
            )

        if ".." in key or key.startswith("."):
            raise InvalidExecutionIdError(f"Invalid execution id {key!r}: path traversal detected")

        if "\x00" in key:
            raise InvalidExecutionIdError("Invalid execution id: null bytes not allowed")

    def _path(self, execution_id: str) -> Path:
        self._validate_key(execution_id)
        return self.base_path / f"{execution_id}.json"

    async def _load(self, execution_id: str) -> dict[str, Any] | None:
        path = self._path(execution_id)

        def _read():
            if not path.exists():
                return None
            with open(path, encoding="utf-8") as f:
                return json.load(f)

        try:
            return await asyncio.to_thread(_read)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read execution {execution_id}: {e}") from e

    async def _save(self, execution_id: str, document: dict[str, Any]) -> None:
        path = self._path(execution_id)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            with atomic_write(path) as f:
                json.dump(document, f, indent=2)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Failed to write execution {execution_id}: {e}") from e

    async def _remove(self, execution_id: str) -> None:
        path = self._path(execution_id)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            raise StorageError(f"Failed to delete execution {execution_id}: {e}") from e

    async def _load_all(self) -> list[dict[str, Any]]:
        def _scan():
            if not self.base_path.exists():
                return []
            documents = []
            for path in self.base_path.glob("*.json"):
                try:
                    with open(path, encoding="utf-8") as f:
                        documents.append(json.load(f))
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning(f"Skipping unreadable execution file {path.name}: {e}")
            return documents

        return await asyncio.to_thread(_scan)
