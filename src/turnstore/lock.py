"""Advisory single-writer lock for a store directory."""

from __future__ import annotations

import fcntl
import os
from pathlib import Path
from typing import IO

from turnstore.errors import StoreLockedError
from turnstore.logging_config import get_logger
from turnstore.paths import lock_path

logger = get_logger(__name__)


class StoreLock:
    """Exclusive, non-blocking flock on ``<directory>/store.lock``.

    The lock file records the holder's pid. The lock is released when the
    holder calls ``release`` or its process exits.
    """

    def __init__(self, directory: Path):
        self.path = lock_path(Path(directory))
        self._fd: IO[bytes] | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = open(self.path, "ab")
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            fd.close()
            raise StoreLockedError(
                f"store {self.path.parent} is locked by another process"
            ) from e

        fd.truncate(0)
        fd.write(f"{os.getpid()}\n".encode())
        fd.flush()
        self._fd = fd
        logger.debug(
            "acquired store lock", path=str(self.path), pid=os.getpid()
        )

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_UN)
        finally:
            fd.close()
        logger.debug("released store lock", path=str(self.path))

    def __enter__(self) -> StoreLock:
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
