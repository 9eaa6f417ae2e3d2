"""
Command-line interface for flowengine.

Usage:
    flowengine run workflows/order-alerts.json --input '{"orderId": 42}'
    flowengine list --workflow-id wf-orders --status failed
    flowengine show exec_20260206_143022_abc12345
    flowengine cancel exec_20260206_143022_abc12345

Execution records are stored under ~/.flowengine/executions unless the
configuration file sets ``storage.path``.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from flowengine.config import EngineConfig
from flowengine.errors import FlowEngineError
from flowengine.observability import configure_logging
from flowengine.schemas.execution import ExecutionStatus
from flowengine.schemas.workflow import Workflow
from flowengine.services.execution_service import ExecutionService
from flowengine.storage.backend import FileExecutionStore


def _store(config: EngineConfig) -> FileExecutionStore:
    return FileExecutionStore(config.storage_path)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_run(args: argparse.Namespace) -> int:
    from flowengine.graph.executor import WorkflowEngine

    path = Path(args.workflow)
    if not path.exists():
        print(f"Workflow file not found: {path}", file=sys.stderr)
        return 1

    try:
        workflow = Workflow.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        print(f"Invalid workflow file {path}:\n{e}", file=sys.stderr)
        return 1

    try:
        payload = json.loads(args.input) if args.input else {}
    except json.JSONDecodeError as e:
        print(f"--input is not valid JSON: {e}", file=sys.stderr)
        return 1
    if not isinstance(payload, dict):
        print("--input must be a JSON object", file=sys.stderr)
        return 1

    config = EngineConfig()
    engine = WorkflowEngine(store=_store(config), config=config)
    execution = asyncio.run(engine.execute_workflow(workflow, payload))

    _print_json(execution.to_document())
    return 0 if execution.status == ExecutionStatus.SUCCESS else 1


def cmd_list(args: argparse.Namespace) -> int:
    service = ExecutionService(_store(EngineConfig()))
    result = asyncio.run(
        service.list_executions(
            workflow_id=args.workflow_id,
            status=args.status,
            page=args.page,
            limit=args.limit,
        )
    )

    if not result.executions:
        print("No executions found.")
        return 0

    print(f"{'ID':<36} {'WORKFLOW':<24} {'STATUS':<10} {'STARTED':<20} DURATION")
    for execution in result.executions:
        duration = f"{execution.duration}ms" if execution.duration is not None else "-"
        print(
            f"{execution.id:<36} {execution.workflow_id[:24]:<24} {execution.status:<10} "
            f"{execution.started_at:%Y-%m-%d %H:%M:%S}  {duration}"
        )
    print(f"\nShowing {len(result.executions)} of {result.total} (page {result.page})")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    service = ExecutionService(_store(EngineConfig()))
    try:
        execution = asyncio.run(service.get_execution(args.execution_id))
    except FlowEngineError as e:
        print(str(e), file=sys.stderr)
        return 1
    _print_json(execution.to_document())
    return 0


def cmd_cancel(args: argparse.Namespace) -> int:
    service = ExecutionService(_store(EngineConfig()))
    try:
        execution = asyncio.run(service.cancel_execution(args.execution_id))
    except FlowEngineError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(f"Cancelled {execution.id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowengine",
        description="flowengine - Run workflows and inspect their executions",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "json", "human"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Execute a workflow definition file")
    run_parser.add_argument("workflow", help="Path to a workflow JSON document")
    run_parser.add_argument("--input", help="Trigger payload as a JSON object")
    run_parser.set_defaults(func=cmd_run)

    list_parser = subparsers.add_parser("list", help="List stored executions")
    list_parser.add_argument("--workflow-id", help="Only executions of this workflow")
    list_parser.add_argument(
        "--status",
        choices=[s.value for s in ExecutionStatus],
        help="Only executions with this status",
    )
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--limit", type=int, default=20)
    list_parser.set_defaults(func=cmd_list)

    show_parser = subparsers.add_parser("show", help="Show one execution record")
    show_parser.add_argument("execution_id")
    show_parser.set_defaults(func=cmd_show)

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a running execution")
    cancel_parser.add_argument("execution_id")
    cancel_parser.set_defaults(func=cmd_cancel)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
