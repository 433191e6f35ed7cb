"""Append-only record log.

The log is the source of truth for the store. Every record is one line
terminated by ``\\n``; records are addressed purely by the byte range
``(offset, length)`` returned from ``append``. Bytes are never rewritten
or truncated.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from turnstore.logging_config import get_logger
from turnstore.paths import log_path

logger = get_logger(__name__)

TERMINATOR = b"\n"


@dataclass(frozen=True)
class LogEntry:
    offset: int
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


class RecordLog:
    """Byte-addressed append-only log file."""

    def __init__(self, directory: Path, fsync: bool = True):
        self.path = log_path(Path(directory))
        self._fsync = fsync
        # "ab" never truncates and always writes at the end of the file
        self._fh = open(self.path, "ab")
        self._position = os.fstat(self._fh.fileno()).st_size
        logger.debug("opened log", path=str(self.path), position=self._position)
        if self.torn_tail:
            logger.warning(
                "log does not end with a complete record",
                path=str(self.path),
                position=self._position,
            )

    @property
    def position(self) -> int:
        """End-of-file offset: how many bytes exist in the log."""
        return self._position

    @property
    def torn_tail(self) -> bool:
        """True when the last record was cut short, e.g. by a crash."""
        if self._position == 0:
            return False
        with open(self.path, "rb") as f:
            f.seek(self._position - 1)
            return f.read(1) != TERMINATOR

    @property
    def closed(self) -> bool:
        return self._fh is None

    def append(self, line: str | bytes) -> LogEntry:
        """Append one record and return the byte range written.

        The returned length includes the terminator.
        """
        if self._fh is None:
            raise ValueError("append to closed log")

        data = line.encode("utf-8") if isinstance(line, str) else bytes(line)
        if TERMINATOR in data:
            raise ValueError("record must not contain a newline")
        data += TERMINATOR

        offset = self._position
        self._fh.write(data)
        self._fh.flush()
        if self._fsync:
            os.fsync(self._fh.fileno())

        self._position += len(data)
        logger.debug(
            "append",
            offset=offset,
            length=len(data),
            position=self._position,
        )
        return LogEntry(offset=offset, length=len(data))

    def read(self, offset: int, length: int) -> bytes:
        """Read ``length`` bytes at ``offset`` using a separate handle."""
        if offset < 0 or length < 0 or offset + length > self._position:
            raise OSError(
                f"read out of range: offset={offset} length={length} "
                f"log size={self._position}"
            )

        with open(self.path, "rb") as f:
            f.seek(offset)
            data = f.read(length)

        if len(data) != length:
            raise OSError(
                f"short read at {offset}: expected {length}, got {len(data)}"
            )
        return data

    def iter_lines(self, start: int = 0) -> Iterator[tuple[int, bytes]]:
        """Yield ``(offset, line)`` for each complete record from ``start``.

        Lines include their terminator, so ``offset + len(line)`` is the
        offset of the next record. A trailing partial line is not yielded.
        """
        end = self._position
        with open(self.path, "rb") as f:
            f.seek(start)
            offset = start
            while offset < end:
                line = f.readline(end - offset)
                if not line.endswith(TERMINATOR):
                    break
                yield offset, line
                offset += len(line)

    def close(self) -> None:
        if self._fh is None:
            return
        logger.debug(
            "closing log", path=str(self.path), position=self._position
        )
        fh, self._fh = self._fh, None
        fh.close()

    def __enter__(self) -> RecordLog:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
