"""
Execution Schema - The durable record of one workflow run.

An execution carries the run's status, timing, an append-only audit log
and, for failures, the error that ended the run. Records are stored as
camelCase documents with a ``_rev`` revision token used for optimistic
concurrency.
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flowengine.errors import InvalidExecutionStateError


class ExecutionStatus(StrEnum):
    """Status of an execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.SUCCESS, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)

# Allowed status moves; terminal statuses have no outgoing edges
_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.CANCELLED}),
    ExecutionStatus.RUNNING: frozenset(
        {ExecutionStatus.SUCCESS, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
    ),
}


class LogLevel(StrEnum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    DEBUG = "debug"


class _DocumentModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class ExecutionLog(_DocumentModel):
    """One line of a run's audit trail."""

    timestamp: datetime = Field(default_factory=datetime.now)
    level: LogLevel = LogLevel.INFO
    message: str
    node_id: str | None = None
    data: dict[str, Any] | None = None


class ExecutionError(_DocumentModel):
    """The error that ended a failed run."""

    message: str
    stack: str | None = None
    node_id: str | None = None


def _log_key(log: ExecutionLog) -> tuple:
    return (log.timestamp, log.level, log.message, log.node_id)


def generate_execution_id() -> str:
    """Return a sortable, unique execution id."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"exec_{timestamp}_{uuid.uuid4().hex[:8]}"


class WorkflowExecution(_DocumentModel):
    """
    A single run of a workflow.

    Status only moves forward (see ``transition_to``); logs are only ever
    appended. ``rev`` is the revision token of the stored copy this object
    was read from, or None if it has never been stored.
    """

    id: str = Field(
        default_factory=generate_execution_id,
        validation_alias=AliasChoices("id", "_id"),
    )
    type: str = "execution"
    workflow_id: str
    workflow_name: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None
    duration: int | None = Field(default=None, description="Run duration in milliseconds")
    logs: list[ExecutionLog] = Field(default_factory=list)
    error: ExecutionError | None = None
    result: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    rev: str | None = Field(
        default=None,
        validation_alias=AliasChoices("_rev", "rev"),
        serialization_alias="_rev",
    )

    def add_log(
        self,
        level: LogLevel | str,
        message: str,
        node_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> ExecutionLog:
        """Append an entry to the audit trail."""
        entry = ExecutionLog(level=LogLevel(level), message=message, node_id=node_id, data=data)
        self.logs.append(entry)
        return entry

    def can_transition_to(self, status: ExecutionStatus | str) -> bool:
        return ExecutionStatus(status) in _TRANSITIONS.get(self.status, frozenset())

    def transition_to(self, status: ExecutionStatus | str) -> None:
        """Move to a new status, rejecting backwards or post-terminal moves."""
        target = ExecutionStatus(status)
        if not self.can_transition_to(target):
            raise InvalidExecutionStateError(
                f"Cannot move execution {self.id} from {self.status} to {target}"
            )
        self.status = target

    def complete(self, status: ExecutionStatus | str) -> None:
        """Enter a terminal status and stamp completion time and duration."""
        self.transition_to(status)
        self.completed_at = datetime.now()
        self.duration = max(0, int((self.completed_at - self.started_at).total_seconds() * 1000))

    def merge_stored(self, stored: "WorkflowExecution") -> bool:
        """
        Fold another writer's stored copy into this one before writing over it.

        Takes the stored revision token, appends stored log entries this copy
        does not have (keeping timestamp order) and, when the stored copy was
        cancelled, takes its cancelled status and completion time. A persisted
        cancel is the only move allowed out of a terminal status held in
        memory; every other change goes through ``transition_to``.

        Returns True if the stored cancel was adopted.
        """
        self.rev = stored.rev

        known = {_log_key(log) for log in self.logs}
        missing = [log for log in stored.logs if _log_key(log) not in known]
        if missing:
            self.logs = sorted(self.logs + missing, key=lambda log: log.timestamp)

        if stored.status != ExecutionStatus.CANCELLED or self.status == ExecutionStatus.CANCELLED:
            return False
        self.status = ExecutionStatus.CANCELLED
        self.completed_at = stored.completed_at or datetime.now()
        self.duration = stored.duration
        if self.duration is None:
            self.duration = max(
                0, int((self.completed_at - self.started_at).total_seconds() * 1000)
            )
        return True

    def logs_for_node(self, node_id: str) -> list[ExecutionLog]:
        return [log for log in self.logs if log.node_id == node_id]

    def to_document(self) -> dict[str, Any]:
        """Serialize to the stored camelCase document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "WorkflowExecution":
        return cls.model_validate(document)
