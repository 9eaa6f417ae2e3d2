"""Services built on top of the execution store."""

from flowengine.services.execution_service import ExecutionPage, ExecutionService

__all__ = ["ExecutionPage", "ExecutionService"]
