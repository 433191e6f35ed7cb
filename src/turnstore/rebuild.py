"""Rebuild the embedding index from the record log.

This is the recovery procedure for a corrupt index (FormatError): the log
is replayed in chunk-size windows, each window is embedded, and the result
replaces the old index file in one rename. Windows close at the same points
``MemoryStore.append`` would close them: after the first whole line that
brings the window to ``chunk_size_bytes`` or more.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Iterator
from dataclasses import dataclass

from turnstore.config import StoreConfig
from turnstore.embeddings import embed_texts
from turnstore.lock import StoreLock
from turnstore.logging_config import get_logger
from turnstore.paths import INDEX_FILENAME, index_path
from turnstore.record_log import LogEntry, RecordLog
from turnstore.vector_index import IndexEntry, VectorIndex

logger = get_logger(__name__)

REBUILD_FILENAME = f".{INDEX_FILENAME}.rebuild"
DEFAULT_BATCH_SIZE = 32


@dataclass
class RebuildResult:
    chunks: int
    log_bytes: int
    index_bytes: int
    elapsed_s: float


def iter_chunk_windows(log: RecordLog, chunk_size: int) -> Iterator[LogEntry]:
    """Split the log into contiguous whole-line windows of ``chunk_size``.

    The final window may be smaller than ``chunk_size``.
    """
    start = 0
    length = 0
    for offset, line in log.iter_lines():
        if length == 0:
            start = offset
        length += len(line)
        if length >= chunk_size:
            yield LogEntry(offset=start, length=length)
            length = 0
    if length:
        yield LogEntry(offset=start, length=length)


async def rebuild_index(
    config: StoreConfig,
    batch_size: int = DEFAULT_BATCH_SIZE,
    cancel: asyncio.Event | None = None,
) -> RebuildResult:
    """Discard the index and re-derive it from the log.

    The store must not be open elsewhere; the directory lock is held for
    the whole rebuild when ``config.lock`` is set.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    t0 = time.perf_counter()
    directory = config.directory
    directory.mkdir(parents=True, exist_ok=True)
    provider = config.embedding_provider
    target = index_path(directory)
    scratch = directory / REBUILD_FILENAME

    lock = StoreLock(directory) if config.lock else None
    if lock is not None:
        lock.acquire()
    try:
        scratch.unlink(missing_ok=True)
        chunks = 0
        with RecordLog(directory, fsync=False) as log:
            index = VectorIndex(
                directory, provider.dim, filename=REBUILD_FILENAME
            )
            windows = iter_chunk_windows(log, config.chunk_size_bytes)
            try:
                batch: list[LogEntry] = []
                for window in windows:
                    batch.append(window)
                    if len(batch) >= batch_size:
                        await _index_batch(log, index, batch, provider, cancel)
                        chunks += len(batch)
                        batch = []
                if batch:
                    await _index_batch(log, index, batch, provider, cancel)
                    chunks += len(batch)
                index.close()
            except BaseException:
                scratch.unlink(missing_ok=True)
                raise
            log_bytes = log.position

        if chunks:
            os.replace(scratch, target)
        else:
            target.unlink(missing_ok=True)
    finally:
        if lock is not None:
            lock.release()

    result = RebuildResult(
        chunks=chunks,
        log_bytes=log_bytes,
        index_bytes=target.stat().st_size if target.exists() else 0,
        elapsed_s=time.perf_counter() - t0,
    )
    logger.info(
        "index rebuilt",
        directory=str(directory),
        chunks=result.chunks,
        log_bytes=result.log_bytes,
        elapsed_s=round(result.elapsed_s, 3),
    )
    return result


async def _index_batch(log, index, windows, provider, cancel) -> None:
    texts = [log.read(w.offset, w.length).decode("utf-8") for w in windows]
    vectors = await embed_texts(provider, texts, cancel)
    index.append(
        [
            IndexEntry(vector=vec, offset=w.offset, length=w.length)
            for w, vec in zip(windows, vectors, strict=True)
        ]
    )
    index.flush()
    logger.debug(
        "rebuilt windows",
        count=len(windows),
        end=windows[-1].end,
    )
