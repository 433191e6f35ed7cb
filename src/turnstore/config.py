"""Store configuration and environment defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from turnstore.paths import get_data_dir

if TYPE_CHECKING:
    from turnstore.embeddings import EmbeddingProvider

# Environment variable names
ENV_CHUNK_SIZE = "TURNSTORE_CHUNK_SIZE"
ENV_EMBEDDING_MODEL = "TURNSTORE_EMBEDDING_MODEL"

# bytes of log content accumulated before a chunk is embedded and indexed
DEFAULT_CHUNK_SIZE = 10_240
DEFAULT_TOP_K = 5

DEFAULT_EMBEDDING_MODEL = os.environ.get(
    ENV_EMBEDDING_MODEL, "sentence-transformers/all-MiniLM-L6-v2"
)


def chunk_size_from_env(default: int = DEFAULT_CHUNK_SIZE) -> int:
    raw = os.environ.get(ENV_CHUNK_SIZE, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(
            f"{ENV_CHUNK_SIZE} must be an integer, got {raw!r}"
        ) from None


@dataclass
class StoreConfig:
    """Options recognized by MemoryStore.

    Attributes:
        directory: Store directory, created if absent.
        embedding_provider: Text to fixed-dimension vector adapter.
        chunk_size_bytes: Log bytes accumulated before a chunk is embedded.
        fsync: fsync the log after every append.
        lock: Take an advisory lock on the directory while open.
        index_flush_rows: Buffered index rows that trigger a flush of the
            index file. Rows still buffered are flushed on close.
    """

    directory: Path
    embedding_provider: EmbeddingProvider
    chunk_size_bytes: int = DEFAULT_CHUNK_SIZE
    fsync: bool = True
    lock: bool = True
    index_flush_rows: int = field(default=1)

    def __post_init__(self) -> None:
        self.directory = Path(self.directory)
        if self.chunk_size_bytes <= 0:
            raise ValueError(
                "chunk_size_bytes must be positive, "
                f"got {self.chunk_size_bytes}"
            )
        if self.index_flush_rows <= 0:
            raise ValueError(
                "index_flush_rows must be positive, "
                f"got {self.index_flush_rows}"
            )

    @classmethod
    def from_env(
        cls,
        embedding_provider: EmbeddingProvider,
        directory: Path | None = None,
        **kwargs,
    ) -> StoreConfig:
        """Build a config from TURNSTORE_* environment variables.

        Explicit arguments win over the environment.
        """
        kwargs.setdefault("chunk_size_bytes", chunk_size_from_env())
        return cls(
            directory=directory or get_data_dir(),
            embedding_provider=embedding_provider,
            **kwargs,
        )
