"""Query command - semantic search over indexed chunks."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Annotated, Literal

import tyro

from turnstore import console
from turnstore.cli._common import DEFAULT_EMBEDDING_MODEL, build_config
from turnstore.config import DEFAULT_TOP_K
from turnstore.store import MemoryStore


@dataclass
class Query:
    """Find the chunks most similar to a query."""

    query_text: tyro.conf.Positional[str] = field(
        metadata={"help": "Search query text"},
    )
    directory: Path | None = field(
        default=None,
        metadata={"help": "Store directory"},
    )
    model: str = field(
        default=DEFAULT_EMBEDDING_MODEL,
        metadata={"help": "Embedding model name"},
    )
    k: Annotated[int, tyro.conf.arg(aliases=("-k",))] = field(
        default=DEFAULT_TOP_K,
        metadata={"help": "Number of results"},
    )
    output_format: Literal["none", "json"] = field(
        default="none",
        metadata={"help": "Output format (none=rich, json)"},
    )

    def run(self) -> int:
        """Execute the query command."""
        config = build_config(self.directory, self.model)

        async def run_query():
            async with MemoryStore(config) as store:
                return await store.query(self.query_text, top_k=self.k)

        t0 = time.perf_counter()
        results = asyncio.run(run_query())
        elapsed_ms = (time.perf_counter() - t0) * 1000

        if self.output_format == "json":
            output = {
                "query": self.query_text,
                "elapsed_ms": round(elapsed_ms, 2),
                "results": [asdict(r) for r in results],
            }
            print(json.dumps(output, indent=2, ensure_ascii=False))
            return 0

        if not results:
            console.info("no indexed chunks yet")
            return 0

        console.header(f"{len(results)} result(s) in {elapsed_ms:.1f}ms")
        for r in results:
            console.print(
                f"{console.score(r.score)} "
                f"[dim]offset={r.offset} length={r.length}[/dim]"
            )
            for turn in r.turns():
                console.print(f"  {turn.role}: {turn.text}", markup=False)
        return 0
