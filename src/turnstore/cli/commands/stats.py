"""Stats command - log and index sizes."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal

from turnstore import console
from turnstore.cli._common import resolve_directory
from turnstore.paths import log_path
from turnstore.store import inspect_store


@dataclass
class Stats:
    """Show how much of the log is indexed. Does not load a model."""

    directory: Path | None = field(
        default=None,
        metadata={"help": "Store directory"},
    )
    output_format: Literal["none", "json"] = field(
        default="none",
        metadata={"help": "Output format (none=rich, json)"},
    )

    def run(self) -> int:
        """Execute the stats command."""
        directory = resolve_directory(self.directory)
        if not log_path(directory).exists():
            console.error(f"no store found at {directory}")
            return 1

        stats = inspect_store(directory)

        if self.output_format == "json":
            output = asdict(stats)
            output["unindexed_bytes"] = stats.unindexed_bytes
            print(json.dumps(output, indent=2))
            return 0

        console.header("Store")
        console.key_value("directory", directory)
        console.key_value("log size", f"{stats.log_bytes / 1024:.1f} KB")
        console.key_value("index size", f"{stats.index_bytes / 1024:.1f} KB")
        console.key_value("indexed chunks", stats.indexed_rows)
        console.key_value("indexed through", stats.indexed_end)
        console.key_value("pending bytes", stats.unindexed_bytes)
        return 0
