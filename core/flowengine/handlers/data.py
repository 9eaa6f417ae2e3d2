"""CSV import and export handlers."""

import csv
import io
from typing import Any

from pydantic import Field

from flowengine.errors import ConfigurationError
from flowengine.graph.context import ExecutionContext
from flowengine.graph.expressions import stringify
from flowengine.handlers.base import HandlerConfig, NodeHandler
from flowengine.schemas.workflow import Node


class CSVImportConfig(HandlerConfig):
    csv_data: str = Field(min_length=1)
    delimiter: str = Field(default=",", min_length=1, max_length=1)
    has_header: bool = True


class CSVImportHandler(NodeHandler):
    """Parses CSV text into a list of row dicts."""

    config_model = CSVImportConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        reader = csv.reader(io.StringIO(config.csv_data), delimiter=config.delimiter)
        lines = [[cell.strip() for cell in row] for row in reader if any(c.strip() for c in row)]

        if not lines:
            return {"rows": [], "count": 0, "headers": []}

        if config.has_header:
            headers, body = lines[0], lines[1:]
        else:
            headers = [f"column_{i}" for i in range(len(lines[0]))]
            body = lines

        rows = [
            {header: (values[i] if i < len(values) else "") for i, header in enumerate(headers)}
            for values in body
        ]
        return {"rows": rows, "count": len(rows), "headers": headers}


class CSVExportConfig(HandlerConfig):
    data: Any = None
    delimiter: str = Field(default=",", min_length=1, max_length=1)
    include_header: bool = True


class CSVExportHandler(NodeHandler):
    """Renders a list of dicts as CSV, using the union of their keys as columns."""

    config_model = CSVExportConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        if not isinstance(config.data, list):
            raise ConfigurationError("Data must be a list for CSV export", node_id=node.id)
        if not config.data:
            return {"csv": "", "rowCount": 0, "headers": []}

        headers: list[str] = []
        for item in config.data:
            if isinstance(item, dict):
                headers.extend(key for key in item if key not in headers)

        output = io.StringIO()
        writer = csv.writer(output, delimiter=config.delimiter, lineterminator="\n")
        if config.include_header:
            writer.writerow(headers)
        for item in config.data:
            if isinstance(item, dict):
                writer.writerow([stringify(item.get(header)) for header in headers])

        return {
            "csv": output.getvalue().rstrip("\n"),
            "rowCount": len(config.data),
            "headers": headers,
        }
