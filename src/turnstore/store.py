"""Memory store: record log + embedding index + chunking.

Turns are appended to the record log as JSON lines. Once the bytes written
since the last chunk reach ``chunk_size_bytes`` the chunk is read back,
embedded as one text, and indexed as one row pointing at its byte range.

The log is the ground truth and the index is derived from it. On open the
chunk state is recomputed from both files: any log tail past the end of the
last indexed chunk becomes the pending chunk, so a crash between a log write
and the matching index write loses nothing and indexes nothing twice.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from pathlib import Path

from turnstore.config import DEFAULT_TOP_K, StoreConfig
from turnstore.embeddings import embed_text
from turnstore.lock import StoreLock
from turnstore.logging_config import get_logger
from turnstore.paths import index_path, log_path
from turnstore.record_log import LogEntry, RecordLog
from turnstore.similarity import top_k as rank_top_k
from turnstore.vector_index import IndexEntry, VectorIndex

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Turn:
    """One conversational record."""

    role: str
    text: str
    timestamp: int = field(default_factory=_now_ms)

    def to_line(self) -> str:
        return json.dumps(
            {"ts": self.timestamp, "role": self.role, "text": self.text},
            ensure_ascii=False,
            separators=(",", ":"),
        )

    @classmethod
    def from_line(cls, line: str | bytes) -> Turn:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        data = json.loads(line)
        return cls(role=data["role"], text=data["text"], timestamp=data["ts"])


@dataclass
class QueryResult:
    text: str
    score: float
    offset: int
    length: int

    def turns(self) -> list[Turn]:
        """Parse the chunk text back into its turns."""
        return [Turn.from_line(line) for line in self.text.splitlines() if line]


@dataclass
class StoreStats:
    """Sizes of the log and index and how much of the log is indexed."""

    log_bytes: int
    index_bytes: int
    indexed_rows: int
    indexed_end: int

    @property
    def unindexed_bytes(self) -> int:
        return max(0, self.log_bytes - self.indexed_end)


class MemoryStore:
    """Append/query/close over one store directory.

    Lifecycle is Closed -> Open -> Closed. ``open`` may be called again after
    ``close``; chunk state is always recovered from disk, never carried over.
    """

    def __init__(self, config: StoreConfig):
        self.config = config
        self.provider = config.embedding_provider
        self._log: RecordLog | None = None
        self._index: VectorIndex | None = None
        self._lock: StoreLock | None = None
        self._chunk_start = 0
        self._bytes_since_flush = 0

    @property
    def is_open(self) -> bool:
        return self._log is not None

    @property
    def chunk_start(self) -> int:
        """Log offset where the pending (un-indexed) chunk begins."""
        return self._chunk_start

    @property
    def bytes_since_flush(self) -> int:
        """Log bytes in the pending chunk."""
        return self._bytes_since_flush

    def open(self) -> MemoryStore:
        if self.is_open:
            return self

        directory = self.config.directory
        logger.debug(
            "opening store",
            directory=str(directory),
            chunk_size=self.config.chunk_size_bytes,
            dim=self.provider.dim,
        )
        directory.mkdir(parents=True, exist_ok=True)

        lock = StoreLock(directory) if self.config.lock else None
        if lock is not None:
            lock.acquire()
        try:
            log = RecordLog(directory, fsync=self.config.fsync)
            try:
                index = VectorIndex(directory, self.provider.dim)
            except BaseException:
                log.close()
                raise
        except BaseException:
            if lock is not None:
                lock.release()
            raise

        self._lock, self._log, self._index = lock, log, index
        self._recover()
        return self

    def _recover(self) -> None:
        log_end = self._log.position
        index_end = self._index.last_indexed_end()

        if index_end < log_end:
            self._chunk_start = index_end
            self._bytes_since_flush = log_end - index_end
            if index_end > 0:
                logger.info(
                    "recovered un-indexed log tail",
                    index_end=index_end,
                    log_end=log_end,
                    pending_bytes=self._bytes_since_flush,
                )
        else:
            if index_end > log_end:
                logger.warning(
                    "index covers bytes past end of log",
                    index_end=index_end,
                    log_end=log_end,
                )
            self._chunk_start = log_end
            self._bytes_since_flush = 0

        logger.debug(
            "store ready",
            chunk_start=self._chunk_start,
            bytes_since_flush=self._bytes_since_flush,
        )

    async def append(
        self, turn: Turn, cancel: asyncio.Event | None = None
    ) -> LogEntry:
        """Append a turn; embed and index the chunk if it is now full.

        The turn is durable in the log before any embedding happens. If the
        embedding fails the chunk stays pending and is retried later.
        """
        log = self._require_open()
        entry = log.append(turn.to_line())
        self._bytes_since_flush += entry.length
        logger.debug(
            "appended turn",
            role=turn.role,
            offset=entry.offset,
            length=entry.length,
            bytes_since_flush=self._bytes_since_flush,
        )

        if self._bytes_since_flush >= self.config.chunk_size_bytes:
            await self._flush_chunk(cancel)
        return entry

    async def query(
        self,
        text: str,
        top_k: int = DEFAULT_TOP_K,
        cancel: asyncio.Event | None = None,
    ) -> list[QueryResult]:
        """Return up to ``top_k`` indexed chunks most similar to ``text``."""
        log = self._require_open()
        query_vec = await embed_text(self.provider, text, cancel)

        data = self._index.read_all()
        if len(data) == 0:
            logger.debug("query on empty index")
            return []

        hits = rank_top_k(query_vec, data.vectors, data.norms, top_k)
        results = []
        for hit in hits:
            offset = int(data.offsets[hit.index])
            length = int(data.lengths[hit.index])
            results.append(
                QueryResult(
                    text=log.read(offset, length).decode("utf-8"),
                    score=hit.score,
                    offset=offset,
                    length=length,
                )
            )

        logger.debug(
            "query",
            top_k=top_k,
            rows=len(data),
            hits=len(results),
            top_score=results[0].score if results else None,
        )
        return results

    async def close(self) -> None:
        """Index any pending chunk, then release the log, index and lock.

        Handles are released even when the final embedding fails; the error
        is still raised and the chunk is recovered on the next open.
        """
        if not self.is_open:
            return

        try:
            if self._bytes_since_flush > 0:
                await self._flush_chunk()
        finally:
            index, log, lock = self._index, self._log, self._lock
            self._index = self._log = self._lock = None
            try:
                index.close()
            finally:
                try:
                    log.close()
                finally:
                    if lock is not None:
                        lock.release()
            logger.debug("store closed", directory=str(self.config.directory))

    def stats(self) -> StoreStats:
        log = self._require_open()
        return StoreStats(
            log_bytes=log.position,
            index_bytes=self._index.size_bytes,
            indexed_rows=self._index.row_count,
            indexed_end=self._index.last_indexed_end(),
        )

    async def _flush_chunk(self, cancel: asyncio.Event | None = None) -> None:
        offset = self._chunk_start
        length = self._bytes_since_flush
        logger.debug("flushing chunk", offset=offset, length=length)

        text = self._log.read(offset, length).decode("utf-8")
        vector = await embed_text(self.provider, text, cancel)

        self._index.append(
            [IndexEntry(vector=vector, offset=offset, length=length)]
        )
        # the row is buffered; a failed flush is retried by the next flush
        self._chunk_start = offset + length
        self._bytes_since_flush = 0

        if self._index.pending_rows >= self.config.index_flush_rows:
            self._index.flush()
        logger.debug("chunk indexed", offset=offset, length=length)

    def _require_open(self) -> RecordLog:
        if self._log is None:
            raise RuntimeError(
                f"store {self.config.directory} is not open"
            )
        return self._log

    async def __aenter__(self) -> MemoryStore:
        return self.open()

    async def __aexit__(self, *exc) -> None:
        await self.close()


def inspect_store(directory: Path) -> StoreStats:
    """Stats for a store directory without an embedding provider.

    Never takes the store lock or modifies any file, so it is safe to call
    while another process has the store open.
    """
    directory = Path(directory)
    log_file = log_path(directory)
    index_file = index_path(directory)
    log_bytes = log_file.stat().st_size if log_file.exists() else 0

    if not index_file.exists() or index_file.stat().st_size == 0:
        return StoreStats(
            log_bytes=log_bytes, index_bytes=0, indexed_rows=0, indexed_end=0
        )

    index = VectorIndex(
        directory, VectorIndex.read_dim(index_file), read_only=True
    )
    try:
        return StoreStats(
            log_bytes=log_bytes,
            index_bytes=index.size_bytes,
            indexed_rows=index.row_count,
            indexed_end=index.last_indexed_end(),
        )
    finally:
        index.close()
