"""Append command - record one turn."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from turnstore import console
from turnstore.cli._common import DEFAULT_EMBEDDING_MODEL, build_config
from turnstore.store import MemoryStore, Turn


@dataclass
class Append:
    """Append a turn to the store (embeds a chunk when it fills up)."""

    text: str = field(metadata={"help": "Turn text"})
    role: str = field(
        default="user",
        metadata={"help": "Speaker role (user, assistant, ...)"},
    )
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

    def run(self) -> int:
        """Execute the append command."""
        config = build_config(self.directory, self.model, self.chunk_size)

        async def run_append():
            async with MemoryStore(config) as store:
                return await store.append(Turn(role=self.role, text=self.text))

        entry = asyncio.run(run_append())
        console.success(
            f"appended {entry.length} bytes at offset {entry.offset}"
        )
        return 0
