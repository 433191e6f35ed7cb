"""Rebuild command - re-derive the embedding index from the log."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from turnstore import console
from turnstore.cli._common import DEFAULT_EMBEDDING_MODEL, build_config
from turnstore.paths import log_path
from turnstore.rebuild import DEFAULT_BATCH_SIZE, rebuild_index


@dataclass
class Rebuild:
    """Discard the index and rebuild it by replaying the log."""

    directory: Path | None = field(
        default=None,
        metadata={"help": "Store directory"},
    )
    model: str = field(
        default=DEFAULT_EMBEDDING_MODEL,
        metadata={"help": "Embedding model name"},
    )
    chunk_size: int | None = field(
        default=None,
        metadata={"help": "Chunk size in bytes"},
    )
    batch_size: int = field(
        default=DEFAULT_BATCH_SIZE,
        metadata={"help": "Chunks embedded per model call"},
    )

    def run(self) -> int:
        """Execute the rebuild command."""
        config = build_config(self.directory, self.model, self.chunk_size)
        if not log_path(config.directory).exists():
            console.error(f"no store found at {config.directory}")
            return 1

        with console.status("rebuilding index..."):
            result = asyncio.run(
                rebuild_index(config, batch_size=self.batch_size)
            )

        console.success(
            f"indexed {result.chunks} chunk(s) in {result.elapsed_s:.2f}s"
        )
        console.key_value("log bytes", result.log_bytes)
        console.key_value("index bytes", result.index_bytes)
        return 0
