"""
Execution service - query and manage stored execution records.

Operations mirror what an API layer needs: paged listing, lookup,
cancellation of running executions, retry of failed ones, and deletion.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from flowengine.errors import ExecutionNotFoundError, InvalidExecutionStateError
from flowengine.schemas.execution import ExecutionStatus, LogLevel, WorkflowExecution
from flowengine.storage.backend import ExecutionStore

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPage:
    """One page of a listing plus the total number of matches."""

    executions: list[WorkflowExecution] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20


class ExecutionService:
    def __init__(self, store: ExecutionStore):
        self.store = store

    async def list_executions(
        self,
        workflow_id: str | None = None,
        status: ExecutionStatus | str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> ExecutionPage:
        """List executions newest first. ``page`` is 1-based."""
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")

        matches = await self.store.find(workflow_id=workflow_id, status=status)
        skip = (page - 1) * limit
        return ExecutionPage(
            executions=matches[skip : skip + limit],
            total=len(matches),
            page=page,
            limit=limit,
        )

    async def get_execution(self, execution_id: str) -> WorkflowExecution:
        execution = await self.store.get(execution_id)
        if execution is None or execution.type != "execution":
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def cancel_execution(self, execution_id: str) -> WorkflowExecution:
        """
        Mark a running execution cancelled.

        The engine notices at its next node boundary; an in-flight handler
        call is allowed to finish.
        """
        execution = await self.get_execution(execution_id)
        if execution.status != ExecutionStatus.RUNNING:
            raise InvalidExecutionStateError(
                f"Can only cancel running executions "
                f"(execution {execution_id} is {execution.status})"
            )

        execution.complete(ExecutionStatus.CANCELLED)
        execution.add_log(LogLevel.WARN, "Execution cancelled by request")
        try:
            await self.store.put(execution)
        except Exception as e:
            logger.error(f"Failed to cancel execution {execution_id}: {e}")
            raise
        logger.info(f"Execution cancelled: {execution_id}")
        return execution

    async def retry_execution(self, execution_id: str) -> WorkflowExecution:
        """Create a new pending execution for the same workflow as a failed one."""
        original = await self.get_execution(execution_id)
        if original.status != ExecutionStatus.FAILED:
            raise InvalidExecutionStateError(
                f"Can only retry failed executions (execution {execution_id} is {original.status})"
            )

        retry = WorkflowExecution(
            workflow_id=original.workflow_id,
            workflow_name=original.workflow_name,
            status=ExecutionStatus.PENDING,
            started_at=datetime.now(),
            metadata={"retryOf": original.id},
        )
        retry.add_log(LogLevel.INFO, f"Retrying failed execution {execution_id}")
        try:
            await self.store.put(retry)
        except Exception as e:
            logger.error(f"Failed to retry execution {execution_id}: {e}")
            raise
        logger.info(f"Execution retry created: {execution_id} -> {retry.id}")
        return retry

    async def delete_execution(self, execution_id: str) -> None:
        execution = await self.get_execution(execution_id)
        try:
            await self.store.delete(execution.id, execution.rev)
        except Exception as e:
            logger.error(f"Failed to delete execution {execution_id}: {e}")
            raise
        logger.info(f"Execution deleted: {execution_id}")
