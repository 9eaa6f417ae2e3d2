"""Tests for ExecutionService: listing, cancel, retry and delete."""

from datetime import datetime, timedelta

import pytest

from flowengine.errors import ExecutionNotFoundError, InvalidExecutionStateError
from flowengine.schemas.execution import ExecutionStatus, WorkflowExecution
from flowengine.services.execution_service import ExecutionService
from flowengine.storage.backend import InMemoryExecutionStore


@pytest.fixture
def store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def service(store) -> ExecutionService:
    return ExecutionService(store)


async def seed(store, status=ExecutionStatus.RUNNING, workflow_id="wf-orders", age=0):
    execution = WorkflowExecution(
        workflow_id=workflow_id,
        workflow_name="Orders",
        status=status,
        started_at=datetime.now() - timedelta(minutes=age),
    )
    await store.put(execution)
    return execution


class TestListExecutions:
    @pytest.mark.asyncio
    async def test_pages_newest_first(self, service, store):
        seeded = [await seed(store, age=minutes) for minutes in range(5)]

        first = await service.list_executions(page=1, limit=2)
        last = await service.list_executions(page=3, limit=2)

        assert first.total == 5
        assert [e.id for e in first.executions] == [seeded[0].id, seeded[1].id]
        assert [e.id for e in last.executions] == [seeded[4].id]

    @pytest.mark.asyncio
    async def test_page_past_the_end_is_empty(self, service, store):
        await seed(store)
        page = await service.list_executions(page=5, limit=10)
        assert page.executions == []
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_filters(self, service, store):
        await seed(store)
        failed = await seed(store, status=ExecutionStatus.FAILED)
        await seed(store, workflow_id="wf-other")

        page = await service.list_executions(workflow_id="wf-orders", status="failed")

        assert [e.id for e in page.executions] == [failed.id]

    @pytest.mark.asyncio
    async def test_rejects_non_positive_paging(self, service):
        with pytest.raises(ValueError):
            await service.list_executions(page=0)
        with pytest.raises(ValueError):
            await service.list_executions(limit=0)


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancels_running_execution(self, service, store):
        running = await seed(store)

        cancelled = await service.cancel_execution(running.id)

        assert cancelled.status == ExecutionStatus.CANCELLED
        assert cancelled.completed_at is not None
        stored = await store.get(running.id)
        assert stored.status == ExecutionStatus.CANCELLED
        assert stored.logs[-1].message == "Execution cancelled by request"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status",
        [
            ExecutionStatus.PENDING,
            ExecutionStatus.SUCCESS,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        ],
    )
    async def test_only_running_can_be_cancelled(self, service, store, status):
        execution = await seed(store, status=status)

        with pytest.raises(InvalidExecutionStateError):
            await service.cancel_execution(execution.id)

        assert (await store.get(execution.id)).status == status

    @pytest.mark.asyncio
    async def test_missing_execution(self, service):
        with pytest.raises(ExecutionNotFoundError):
            await service.cancel_execution("exec_missing")


class TestRetry:
    @pytest.mark.asyncio
    async def test_creates_pending_copy_of_failed_execution(self, service, store):
        failed = await seed(store, status=ExecutionStatus.FAILED)

        retry = await service.retry_execution(failed.id)

        assert retry.id != failed.id
        assert retry.status == ExecutionStatus.PENDING
        assert retry.workflow_id == failed.workflow_id
        assert retry.metadata == {"retryOf": failed.id}
        assert retry.logs[0].message == f"Retrying failed execution {failed.id}"
        assert (await store.get(retry.id)) is not None
        assert (await store.get(failed.id)).status == ExecutionStatus.FAILED

    @pytest.mark.asyncio
    async def test_only_failed_can_be_retried(self, service, store):
        running = await seed(store)
        with pytest.raises(InvalidExecutionStateError):
            await service.retry_execution(running.id)


class TestDelete:
    @pytest.mark.asyncio
    async def test_deletes_record(self, service, store):
        execution = await seed(store)

        await service.delete_execution(execution.id)

        assert await store.get(execution.id) is None
        with pytest.raises(ExecutionNotFoundError):
            await service.get_execution(execution.id)
