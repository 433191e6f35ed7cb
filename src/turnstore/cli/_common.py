"""Shared helpers for CLI commands."""

from __future__ import annotations

from pathlib import Path

from turnstore import console
from turnstore.config import (
    DEFAULT_EMBEDDING_MODEL,
    StoreConfig,
    chunk_size_from_env,
)
from turnstore.paths import get_data_dir

__all__ = [
    "DEFAULT_EMBEDDING_MODEL",
    "build_config",
    "resolve_directory",
]


def resolve_directory(directory: Path | None) -> Path:
    """Explicit --directory, else TURNSTORE_DATA_DIR, else the XDG default."""
    if directory is not None:
        return directory.expanduser().resolve()
    return get_data_dir()


def build_config(
    directory: Path | None,
    model: str,
    chunk_size: int | None = None,
) -> StoreConfig:
    # lazy import - pulls torch via sentence-transformers
    from turnstore.embeddings import SentenceTransformerProvider

    with console.status(f"loading embedding model ({model})..."):
        provider = SentenceTransformerProvider(model=model)

    return StoreConfig(
        directory=resolve_directory(directory),
        embedding_provider=provider,
        chunk_size_bytes=chunk_size or chunk_size_from_env(),
    )
