"""Path utilities for turnstore data directories.

A store is a single directory holding the record log, the embedding index
and a lock file. When no directory is given explicitly it is resolved as:

Environment variables:
    TURNSTORE_DATA_DIR: Use this directory as the store root.

XDG Base Directory compliance:
    Default location: $XDG_DATA_HOME/turnstore/<name>
    Falls back to: ~/.local/share/turnstore/<name>

The data home (not the cache home) is used because the record log is the
only copy of the conversation. The index beside it can be rebuilt, the log
cannot.
"""

from __future__ import annotations

import os
from pathlib import Path

ENV_DATA_DIR = "TURNSTORE_DATA_DIR"

DEFAULT_STORE_NAME = "default"

LOG_FILENAME = "conversations.log"
INDEX_FILENAME = "embeddings.arrow"
LOCK_FILENAME = "store.lock"


def get_xdg_data_home() -> Path:
    """Get XDG data home directory.

    Returns $XDG_DATA_HOME if set, otherwise ~/.local/share
    """
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data)
    return Path.home() / ".local" / "share"


def get_global_data_dir() -> Path:
    return get_xdg_data_home() / "turnstore"


def get_data_dir(name: str | None = None) -> Path:
    """Resolve the store directory.

    Priority:
    1. TURNSTORE_DATA_DIR env var
    2. $XDG_DATA_HOME/turnstore/<name>

    Args:
        name: Store name under the global data directory. Ignored when
            TURNSTORE_DATA_DIR is set.

    Returns:
        Path to the store directory (not created)
    """
    env_dir = os.environ.get(ENV_DATA_DIR)
    if env_dir:
        return Path(env_dir)
    return get_global_data_dir() / (name or DEFAULT_STORE_NAME)


def log_path(directory: Path) -> Path:
    return directory / LOG_FILENAME


def index_path(directory: Path) -> Path:
    return directory / INDEX_FILENAME


def lock_path(directory: Path) -> Path:
    return directory / LOCK_FILENAME
