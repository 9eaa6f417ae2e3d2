"""
End-to-end tests for the workflow engine: graph walking, retries,
continue-on-error, error triggers, cancellation and persistence.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from flowengine.config import EngineConfig
from flowengine.errors import StorageError
from flowengine.graph.executor import WorkflowEngine
from flowengine.handlers.base import NodeHandler
from flowengine.handlers.messaging import SlackHandler
from flowengine.handlers.registry import HandlerRegistry
from flowengine.handlers.triggers import ErrorTriggerHandler, WebhookHandler
from flowengine.schemas.execution import ExecutionStatus, LogLevel
from flowengine.schemas.workflow import Workflow
from flowengine.services.execution_service import ExecutionService
from flowengine.storage.backend import InMemoryExecutionStore


class RecordingHandler(NodeHandler):
    """Succeeds, returning a configured value and recording the call order."""

    def __init__(self, calls: list[str]):
        self.calls = calls

    async def execute(self, node, context):
        self.calls.append(node.id)
        return node.config.get("returns", {"node": node.id})


class FailingHandler(NodeHandler):
    def __init__(self, calls: list[str]):
        self.calls = calls

    async def execute(self, node, context):
        self.calls.append(node.id)
        raise RuntimeError(f"{node.id} exploded")


class ContextSnapshotHandler(NodeHandler):
    """Captures the variables it was called with."""

    def __init__(self):
        self.seen: list[dict] = []

    async def execute(self, node, context):
        self.seen.append(dict(context.variables))
        return {"snapshot": True}


class HangingHandler(NodeHandler):
    async def execute(self, node, context):
        await asyncio.Event().wait()


class BrokenErrorHandler(NodeHandler):
    async def execute(self, node, context):
        raise RuntimeError("error handler is broken too")


@pytest.fixture(autouse=True)
def fast_sleep(monkeypatch):
    """Mock asyncio.sleep to avoid real retry delays."""
    monkeypatch.setattr("asyncio.sleep", AsyncMock())


@pytest.fixture
def calls() -> list[str]:
    return []


@pytest.fixture
def snapshot() -> ContextSnapshotHandler:
    return ContextSnapshotHandler()


@pytest.fixture
def registry(calls, snapshot) -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register("webhook", WebhookHandler())
    registry.register("error_trigger", ErrorTriggerHandler())
    registry.register("ok", RecordingHandler(calls))
    registry.register("fail", FailingHandler(calls))
    registry.register("snapshot", snapshot)
    registry.register("hang", HangingHandler())
    return registry


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(
        default_timeout_ms=1000,
        default_retry_delay_ms=0,
        max_node_executions=50,
        dedupe_fan_in=False,
        storage_path=tmp_path,
    )


@pytest.fixture
def store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def engine(store, registry, engine_config) -> WorkflowEngine:
    return WorkflowEngine(store=store, registry=registry, config=engine_config)


def build_workflow(nodes: list[dict], connections: list[dict], trigger: str = "hook") -> Workflow:
    return Workflow.model_validate(
        {
            "id": "wf-test",
            "name": "Test workflow",
            "trigger": trigger,
            "nodes": [{"id": "hook", "type": "webhook", "name": "Hook"}, *nodes],
            "connections": connections,
        }
    )


def executed_nodes(execution) -> list[str]:
    return [
        log.node_id for log in execution.logs if log.message.startswith("Executing node:")
    ]


# === TERMINAL STATUS ===


@pytest.mark.asyncio
async def test_linear_workflow_succeeds(engine, store, calls):
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "ok"}, {"id": "B", "type": "ok"}],
        connections=[{"from": "hook", "to": "A"}, {"from": "A", "to": "B"}],
    )

    execution = await engine.execute_workflow(workflow, {"orderId": 7})

    assert execution.status == ExecutionStatus.SUCCESS
    assert calls == ["A", "B"]
    assert execution.completed_at >= execution.started_at
    assert execution.duration is not None and execution.duration >= 0
    assert execution.result == {"path": ["hook", "A", "B"]}
    assert execution.logs[-1].message.startswith("Workflow execution completed successfully")

    stored = await store.get(execution.id)
    assert stored.status == ExecutionStatus.SUCCESS
    assert stored.rev == execution.rev
    assert len(stored.logs) == len(execution.logs)


@pytest.mark.asyncio
async def test_downstream_nodes_see_upstream_results(engine, snapshot):
    workflow = build_workflow(
        nodes=[
            {"id": "A", "type": "ok", "config": {"returns": {"total": 12}}},
            {"id": "B", "type": "snapshot"},
        ],
        connections=[{"from": "hook", "to": "A"}, {"from": "A", "to": "B"}],
    )

    await engine.execute_workflow(workflow, {"orderId": 7})

    seen = snapshot.seen[0]
    assert seen["A"] == {"total": 12}
    assert seen["hook"]["payload"] == {"orderId": 7}
    assert seen["$workflowId"] == "wf-test"


@pytest.mark.asyncio
async def test_failing_node_without_continue_fails_run(engine, calls):
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "fail", "executionConfig": {"retries": 2}}],
        connections=[{"from": "hook", "to": "A"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    assert calls == ["A", "A", "A"]
    attempt_logs = [
        log
        for log in execution.logs
        if log.node_id == "A" and log.level in (LogLevel.WARN, LogLevel.ERROR)
    ]
    assert len(attempt_logs) >= 3
    assert "A" in execution.error.message
    assert execution.error.node_id == "A"
    assert "RuntimeError" in execution.error.stack
    assert execution.completed_at >= execution.started_at


@pytest.mark.asyncio
async def test_fatal_failure_stops_the_walk(engine, calls):
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "fail"}, {"id": "B", "type": "ok"}],
        connections=[{"from": "hook", "to": "A"}, {"from": "A", "to": "B"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    assert "B" not in calls


@pytest.mark.asyncio
async def test_continue_on_error_runs_successors(engine, calls, snapshot):
    workflow = build_workflow(
        nodes=[
            {"id": "A", "type": "fail", "executionConfig": {"continueOnError": True}},
            {"id": "B", "type": "snapshot"},
        ],
        connections=[{"from": "hook", "to": "A"}, {"from": "A", "to": "B"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.SUCCESS
    assert any(log.node_id == "A" and log.level == LogLevel.ERROR for log in execution.logs)
    assert any(
        log.node_id == "B" and log.message.startswith("Node completed") for log in execution.logs
    )

    seen = snapshot.seen[0]
    assert "A" not in seen
    assert seen["$error"]["message"] == "A exploded"
    assert seen["$error"]["type"] == "RuntimeError"
    assert seen["$failedNode"] == {"id": "A", "name": "A", "type": "fail"}


@pytest.mark.asyncio
async def test_unknown_node_type_fails_run_not_engine(engine):
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "teleport", "executionConfig": {"retries": 3}}],
        connections=[{"from": "hook", "to": "A"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    assert "No handler for node type: teleport" in execution.error.message
    assert len([log for log in execution.logs if log.message.startswith("Attempt")]) == 4


@pytest.mark.asyncio
async def test_missing_required_config_uses_every_attempt(engine, registry):
    registry.register("slack", SlackHandler())
    workflow = build_workflow(
        nodes=[
            {
                "id": "A",
                "type": "slack",
                "config": {"text": "hi"},
                "executionConfig": {"retries": 2},
            }
        ],
        connections=[{"from": "hook", "to": "A"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    node_logs = [log.message for log in execution.logs_for_node("A")]
    attempts = [m.split(" failed")[0] for m in node_logs if m.startswith("Attempt")]
    assert attempts == ["Attempt 1/3", "Attempt 2/3", "Attempt 3/3"]
    assert any(m.startswith("Node failed after 3 attempt(s)") for m in node_logs)


@pytest.mark.asyncio
async def test_node_timeout_fails_node(engine):
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "hang", "executionConfig": {"timeoutMs": 10}}],
        connections=[{"from": "hook", "to": "A"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    assert "timed out after 10ms" in execution.error.message


# === BRANCHING ===


@pytest.mark.asyncio
async def test_fan_out_runs_in_declaration_order(engine, calls):
    workflow = build_workflow(
        nodes=[{"id": "C", "type": "ok"}, {"id": "B", "type": "ok"}],
        connections=[{"from": "hook", "to": "B"}, {"from": "hook", "to": "C"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.SUCCESS
    assert calls == ["B", "C"]
    assert executed_nodes(execution) == ["hook", "B", "C"]


@pytest.mark.asyncio
async def test_fan_out_is_depth_first(engine, calls):
    workflow = build_workflow(
        nodes=[
            {"id": "B", "type": "ok"},
            {"id": "B2", "type": "ok"},
            {"id": "C", "type": "ok"},
        ],
        connections=[
            {"from": "hook", "to": "B"},
            {"from": "hook", "to": "C"},
            {"from": "B", "to": "B2"},
        ],
    )

    await engine.execute_workflow(workflow)

    assert calls == ["B", "B2", "C"]


@pytest.mark.asyncio
async def test_guarded_connections(engine, calls):
    workflow = build_workflow(
        nodes=[
            {"id": "check", "type": "ok", "config": {"returns": {"status": "active"}}},
            {"id": "yes", "type": "ok"},
            {"id": "no", "type": "ok"},
        ],
        connections=[
            {"from": "hook", "to": "check"},
            {"from": "check", "to": "yes", "condition": "check.status == 'active'"},
            {
                "from": "check",
                "to": "no",
                "condition": {"field": "check.status", "operator": "ne", "value": "active"},
            },
        ],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.SUCCESS
    assert calls == ["check", "yes"]
    skipped = [log for log in execution.logs if log.message.startswith("Skipping connection")]
    assert len(skipped) == 1
    assert "check -> no" in skipped[0].message


@pytest.mark.asyncio
async def test_guard_reads_caller_input(engine, calls):
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "ok"}],
        connections=[
            {"from": "hook", "to": "A", "condition": '{"field": "x", "operator": "eq", "value": 5}'}
        ],
    )

    await engine.execute_workflow(workflow, {"x": "5"})
    await engine.execute_workflow(workflow, {"x": 6})

    assert calls == ["A"]


@pytest.mark.asyncio
async def test_fan_in_runs_shared_successor_per_path(engine, calls):
    workflow = build_workflow(
        nodes=[{"id": "B", "type": "ok"}, {"id": "C", "type": "ok"}, {"id": "D", "type": "ok"}],
        connections=[
            {"from": "hook", "to": "B"},
            {"from": "hook", "to": "C"},
            {"from": "B", "to": "D"},
            {"from": "C", "to": "D"},
        ],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.SUCCESS
    assert calls == ["B", "D", "C", "D"]


@pytest.mark.asyncio
async def test_fan_in_dedupe_runs_successor_once(store, registry, engine_config, calls):
    engine_config.dedupe_fan_in = True
    engine = WorkflowEngine(store=store, registry=registry, config=engine_config)
    workflow = build_workflow(
        nodes=[{"id": "B", "type": "ok"}, {"id": "C", "type": "ok"}, {"id": "D", "type": "ok"}],
        connections=[
            {"from": "hook", "to": "B"},
            {"from": "hook", "to": "C"},
            {"from": "B", "to": "D"},
            {"from": "C", "to": "D"},
        ],
    )

    await engine.execute_workflow(workflow)

    assert calls == ["B", "D", "C"]


@pytest.mark.asyncio
async def test_cycle_hits_node_execution_limit(store, registry, engine_config, calls):
    engine_config.max_node_executions = 10
    engine = WorkflowEngine(store=store, registry=registry, config=engine_config)
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "ok"}, {"id": "B", "type": "ok"}],
        connections=[
            {"from": "hook", "to": "A"},
            {"from": "A", "to": "B"},
            {"from": "B", "to": "A"},
        ],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    assert "limit of 10" in execution.error.message
    assert len(calls) == 9


# === ERROR TRIGGERS ===


@pytest.mark.asyncio
async def test_error_trigger_runs_with_failure_details(engine, store):
    workflow = build_workflow(
        nodes=[
            {"id": "A", "type": "fail", "name": "Charge card"},
            {"id": "on_error", "type": "error_trigger"},
        ],
        connections=[{"from": "hook", "to": "A"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    handler_logs = [log for log in execution.logs if log.node_id == "on_error"]
    assert handler_logs
    assert handler_logs[0].message == "Running error handler on_error for node Charge card"
    assert not any(log.level == LogLevel.ERROR for log in handler_logs)


@pytest.mark.asyncio
async def test_error_trigger_does_not_leak_into_run_variables(engine, snapshot):
    workflow = build_workflow(
        nodes=[
            {"id": "A", "type": "fail", "executionConfig": {"continueOnError": True}},
            {"id": "on_error", "type": "error_trigger"},
            {"id": "B", "type": "snapshot"},
        ],
        connections=[{"from": "hook", "to": "A"}, {"from": "A", "to": "B"}],
    )

    await engine.execute_workflow(workflow)

    assert "on_error" not in snapshot.seen[0]


@pytest.mark.asyncio
async def test_failing_error_handler_is_swallowed(store, registry, engine_config, calls):
    registry.register("error_trigger", BrokenErrorHandler())
    engine = WorkflowEngine(store=store, registry=registry, config=engine_config)
    workflow = build_workflow(
        nodes=[
            {"id": "A", "type": "fail", "executionConfig": {"continueOnError": True}},
            {"id": "on_error", "type": "error_trigger"},
            {"id": "B", "type": "ok"},
        ],
        connections=[{"from": "hook", "to": "A"}, {"from": "A", "to": "B"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.SUCCESS
    assert "B" in calls
    assert any(
        log.node_id == "on_error" and "failed" in log.message and log.level == LogLevel.ERROR
        for log in execution.logs
    )


@pytest.mark.asyncio
async def test_error_trigger_never_handles_its_own_failure(store, registry, engine_config):
    registry.register("error_trigger", BrokenErrorHandler())
    engine = WorkflowEngine(store=store, registry=registry, config=engine_config)
    workflow = Workflow.model_validate(
        {
            "id": "wf-self",
            "name": "Self",
            "trigger": "on_error",
            "nodes": [{"id": "on_error", "type": "error_trigger"}],
            "connections": [],
        }
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    assert not any(log.message.startswith("Running error handler") for log in execution.logs)


# === RECORDS AND PERSISTENCE ===


@pytest.mark.asyncio
async def test_repeated_runs_are_independent(engine, store, snapshot):
    workflow = build_workflow(
        nodes=[{"id": "B", "type": "snapshot"}],
        connections=[{"from": "hook", "to": "B"}],
    )

    first = await engine.execute_workflow(workflow, {"n": 1})
    second = await engine.execute_workflow(workflow, {"n": 2})

    assert first.id != second.id
    assert first.status == second.status == ExecutionStatus.SUCCESS
    assert snapshot.seen[0]["hook"]["payload"] == {"n": 1}
    assert snapshot.seen[1]["hook"]["payload"] == {"n": 2}
    assert snapshot.seen[1]["$executionId"] == second.id
    assert len(await store.find(workflow_id="wf-test")) == 2


@pytest.mark.asyncio
async def test_invalid_workflow_returns_failed_record(engine, store, calls):
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "ok"}],
        connections=[{"from": "hook", "to": "ghost"}],
        trigger="missing",
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    assert "Trigger node 'missing' not found" in execution.error.message
    assert "missing target 'ghost'" in execution.error.message
    assert calls == []
    assert (await store.get(execution.id)).status == ExecutionStatus.FAILED


@pytest.mark.asyncio
async def test_initial_persist_failure_fails_run(registry, engine_config, calls):
    store = InMemoryExecutionStore()
    store._save = AsyncMock(side_effect=StorageError("disk full"))
    engine = WorkflowEngine(store=store, registry=registry, config=engine_config)
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "ok"}],
        connections=[{"from": "hook", "to": "A"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.FAILED
    assert "disk full" in execution.error.message
    assert calls == []


@pytest.mark.asyncio
async def test_final_persist_failure_is_swallowed(registry, engine_config):
    store = InMemoryExecutionStore()
    original_save = store._save
    saves = 0

    async def flaky_save(execution_id, document):
        nonlocal saves
        saves += 1
        if saves > 1:
            raise StorageError("disk full")
        await original_save(execution_id, document)

    store._save = flaky_save
    engine = WorkflowEngine(store=store, registry=registry, config=engine_config)
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "ok"}],
        connections=[{"from": "hook", "to": "A"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.SUCCESS
    assert (await store.get(execution.id)).status == ExecutionStatus.RUNNING


# === CANCELLATION ===


class CancellingHandler(NodeHandler):
    """Cancels the running execution through the execution service."""

    def __init__(self, store):
        self.service = ExecutionService(store)
        self.cancelled = None

    async def execute(self, node, context):
        self.cancelled = await self.service.cancel_execution(context.variables["$executionId"])
        return {"cancelled": True}


@pytest.mark.asyncio
async def test_cancellation_stops_at_next_node(store, registry, engine_config, calls):
    canceller = CancellingHandler(store)
    registry.register("cancel", canceller)
    engine = WorkflowEngine(store=store, registry=registry, config=engine_config)
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "cancel"}, {"id": "B", "type": "ok"}],
        connections=[{"from": "hook", "to": "A"}, {"from": "A", "to": "B"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.CANCELLED
    assert calls == []
    stored = await store.get(execution.id)
    assert stored.status == ExecutionStatus.CANCELLED
    assert any(log.message == "Workflow execution cancelled" for log in stored.logs)
    assert any(log.message == "Execution cancelled by request" for log in stored.logs)
    assert stored.completed_at == canceller.cancelled.completed_at
    messages = [log.message for log in stored.logs]
    assert messages.index("Execution cancelled by request") < messages.index(
        "Workflow execution cancelled"
    )


@pytest.mark.asyncio
async def test_cancel_after_last_node_is_adopted_on_finalize(store, registry, engine_config):
    canceller = CancellingHandler(store)
    registry.register("cancel", canceller)
    engine = WorkflowEngine(store=store, registry=registry, config=engine_config)
    workflow = build_workflow(
        nodes=[{"id": "A", "type": "cancel"}],
        connections=[{"from": "hook", "to": "A"}],
    )

    execution = await engine.execute_workflow(workflow)

    assert execution.status == ExecutionStatus.CANCELLED
    stored = await store.get(execution.id)
    assert stored.status == ExecutionStatus.CANCELLED
    assert stored.completed_at == canceller.cancelled.completed_at
    assert stored.result == {"path": ["hook", "A"]}
    messages = [log.message for log in stored.logs]
    assert "Execution cancelled by request" in messages
    assert "Execution was cancelled externally" in messages
    assert "Workflow execution started" in messages
