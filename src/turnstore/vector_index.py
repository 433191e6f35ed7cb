"""Columnar embedding index stored as an Arrow IPC stream.

File layout (Arrow IPC streaming format):
- schema message, written once when the file is created
- zero or more record batch messages, each self-contained
- 8 bytes end-of-stream marker: 0xFFFFFFFF 0x00000000

Columns:
- vector: fixed_size_list<float32>[dim]
- norm:   float64, L2 norm of vector, computed once at append
- offset: uint64, start of the chunk in the record log
- length: uint32, byte length of the chunk in the record log

Appends never re-read or rewrite earlier batches: the trailing EOS marker is
truncated, the new batch messages are written in its place, and a fresh
marker closes the stream again. Cost is O(new rows).
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pyarrow as pa

from turnstore.errors import FormatError
from turnstore.logging_config import get_logger
from turnstore.paths import INDEX_FILENAME

logger = get_logger(__name__)

EOS_MARKER = b"\xff\xff\xff\xff\x00\x00\x00\x00"
EOS_SIZE = len(EOS_MARKER)

MAX_CHUNK_LENGTH = 2**32 - 1


@dataclass
class IndexEntry:
    """One row to index: a chunk's vector and its byte range in the log."""

    vector: np.ndarray
    offset: int
    length: int


@dataclass
class IndexData:
    """Parallel column arrays: row i is (vectors[i], norms[i], ...)."""

    vectors: np.ndarray
    norms: np.ndarray
    offsets: np.ndarray
    lengths: np.ndarray

    def __len__(self) -> int:
        return len(self.offsets)

    @classmethod
    def empty(cls, dim: int) -> IndexData:
        return cls(
            vectors=np.empty((0, dim), dtype=np.float32),
            norms=np.empty(0, dtype=np.float64),
            offsets=np.empty(0, dtype=np.uint64),
            lengths=np.empty(0, dtype=np.uint32),
        )

    def end(self) -> int:
        """Exclusive upper bound of the log range covered by these rows."""
        if len(self) == 0:
            return 0
        ends = self.offsets.astype(np.int64) + self.lengths.astype(np.int64)
        return int(ends.max())


def index_schema(dim: int) -> pa.Schema:
    return pa.schema(
        [
            pa.field("vector", pa.list_(pa.float32(), dim), nullable=False),
            pa.field("norm", pa.float64(), nullable=False),
            pa.field("offset", pa.uint64(), nullable=False),
            pa.field("length", pa.uint32(), nullable=False),
        ]
    )


def encode_stream(
    schema: pa.Schema, batches: Sequence[pa.RecordBatch]
) -> bytes:
    """Serialize batches as a complete stream: header + batches + EOS."""
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, schema) as writer:
        for batch in batches:
            writer.write_batch(batch)
    return sink.getvalue().to_pybytes()


def schema_header(schema: pa.Schema) -> bytes:
    """Bytes of the schema message that opens every stream for ``schema``.

    Computed by serializing an empty stream and removing the EOS marker.
    The marker is a property of the IPC format version, so it is checked
    rather than assumed.
    """
    empty = encode_stream(schema, [])
    if len(empty) <= EOS_SIZE or not empty.endswith(EOS_MARKER):
        raise FormatError(
            f"pyarrow {pa.__version__} wrote an unexpected end-of-stream "
            f"marker: {empty[-EOS_SIZE:].hex()}"
        )
    return empty[:-EOS_SIZE]


def batch_messages(
    schema: pa.Schema, header: bytes, batches: Sequence[pa.RecordBatch]
) -> bytes:
    """Serialize batches as bare record batch messages (no header, no EOS)."""
    stream = encode_stream(schema, batches)
    if not stream.startswith(header) or not stream.endswith(EOS_MARKER):
        raise FormatError("serialized stream does not match cached header")
    return stream[len(header) : -EOS_SIZE]


def append_messages(path: Path, messages: bytes) -> None:
    """Splice record batch messages onto the end of an existing stream file.

    Truncates the trailing EOS marker, writes ``messages`` and a new EOS
    marker. Bytes before the old marker are never touched.
    """
    with open(path, "r+b") as f:
        size = f.seek(0, os.SEEK_END)
        if size < EOS_SIZE:
            raise FormatError(f"{path} is too short to be an index stream")
        f.seek(size - EOS_SIZE)
        if f.read(EOS_SIZE) != EOS_MARKER:
            raise FormatError(f"{path} does not end with an EOS marker")

        f.truncate(size - EOS_SIZE)
        f.seek(size - EOS_SIZE)
        f.write(messages)
        f.write(EOS_MARKER)
        f.flush()
        os.fsync(f.fileno())


def entries_to_batch(
    entries: Sequence[IndexEntry], schema: pa.Schema, dim: int
) -> pa.RecordBatch:
    vectors = np.empty((len(entries), dim), dtype=np.float32)
    for i, entry in enumerate(entries):
        vec = np.asarray(entry.vector, dtype=np.float32).reshape(-1)
        if vec.shape[0] != dim:
            raise ValueError(
                f"vector has dimension {vec.shape[0]}, index expects {dim}"
            )
        vectors[i] = vec

    for entry in entries:
        if entry.offset < 0 or not 0 <= entry.length <= MAX_CHUNK_LENGTH:
            raise ValueError(
                f"invalid log range offset={entry.offset} length={entry.length}"
            )

    # norm computed in float64 from the stored float32 values
    norms = np.sqrt(np.sum(vectors.astype(np.float64) ** 2, axis=1))
    offsets = np.array([e.offset for e in entries], dtype=np.uint64)
    lengths = np.array([e.length for e in entries], dtype=np.uint32)

    vector_col = pa.FixedSizeListArray.from_arrays(
        pa.array(vectors.reshape(-1), type=pa.float32()), dim
    )
    return pa.RecordBatch.from_arrays(
        [
            vector_col,
            pa.array(norms, type=pa.float64()),
            pa.array(offsets, type=pa.uint64()),
            pa.array(lengths, type=pa.uint32()),
        ],
        schema=schema,
    )


def batches_to_data(batches: Sequence[pa.RecordBatch], dim: int) -> IndexData:
    if not batches:
        return IndexData.empty(dim)

    vectors = np.concatenate(
        [
            b.column(0)
            .flatten()
            .to_numpy(zero_copy_only=False)
            .reshape(-1, dim)
            for b in batches
        ]
    ).astype(np.float32, copy=False)
    return IndexData(
        vectors=vectors,
        norms=np.concatenate(
            [b.column(1).to_numpy(zero_copy_only=False) for b in batches]
        ),
        offsets=np.concatenate(
            [b.column(2).to_numpy(zero_copy_only=False) for b in batches]
        ),
        lengths=np.concatenate(
            [b.column(3).to_numpy(zero_copy_only=False) for b in batches]
        ),
    )


class VectorIndex:
    """Arrow IPC index of (vector, norm, offset, length) rows.

    ``append`` only buffers; ``flush`` makes buffered rows durable.
    ``read_all`` sees persisted rows followed by buffered rows.

    With ``read_only=True`` the file is never modified: a missing EOS or a
    torn trailing message is skipped rather than repaired, and ``append``
    and ``flush`` raise. Use it when another process may hold the store.
    """

    def __init__(
        self,
        directory: Path,
        dim: int,
        filename: str = INDEX_FILENAME,
        read_only: bool = False,
    ):
        if dim <= 0:
            raise ValueError(f"dim must be positive, got {dim}")

        self.path = Path(directory) / filename
        self.dim = dim
        self.schema = index_schema(dim)
        self._header: bytes | None = None
        self._pending: list[pa.RecordBatch] = []
        self._pending_rows = 0
        self._persisted_rows = 0
        self._indexed_end = 0
        self._closed = False
        self.read_only = read_only
        # bytes of complete messages to read when the tail is left unrepaired
        self._read_limit: int | None = None

        # computed and checked once per open
        header = self.schema_header
        if self.size_bytes > 0:
            self._validate_existing(header)
            persisted = batches_to_data(self._read_persisted(), dim)
            self._persisted_rows = len(persisted)
            self._indexed_end = persisted.end()

        logger.debug(
            "opened index",
            path=str(self.path),
            rows=self._persisted_rows,
            indexed_end=self._indexed_end,
            header_bytes=len(header),
        )

    @property
    def schema_header(self) -> bytes:
        if self._header is None:
            self._header = schema_header(self.schema)
        return self._header

    @property
    def size_bytes(self) -> int:
        try:
            return self.path.stat().st_size
        except FileNotFoundError:
            return 0

    @property
    def pending_rows(self) -> int:
        return self._pending_rows

    @property
    def row_count(self) -> int:
        return self._persisted_rows + self._pending_rows

    @property
    def closed(self) -> bool:
        return self._closed

    def last_indexed_end(self) -> int:
        """max(offset + length) over persisted and buffered rows, or 0."""
        return self._indexed_end

    def append(self, entries: Sequence[IndexEntry]) -> None:
        """Buffer entries as one in-memory batch. No disk I/O."""
        self._check_writable()
        if not entries:
            return

        batch = entries_to_batch(entries, self.schema, self.dim)
        self._pending.append(batch)
        self._pending_rows += batch.num_rows
        self._indexed_end = max(
            self._indexed_end, max(e.offset + e.length for e in entries)
        )

    def flush(self) -> None:
        """Persist buffered batches."""
        self._check_writable()
        if not self._pending:
            return

        batches = self._pending
        if self.size_bytes == 0:
            self._write_new(batches)
        else:
            append_messages(
                self.path,
                batch_messages(self.schema, self.schema_header, batches),
            )

        logger.debug(
            "flushed index",
            path=str(self.path),
            batches=len(batches),
            rows=self._pending_rows,
            size=self.size_bytes,
        )
        self._persisted_rows += self._pending_rows
        self._pending = []
        self._pending_rows = 0

    def read_all(self) -> IndexData:
        """All rows, persisted first then buffered, in append order."""
        self._check_open()
        batches: list[pa.RecordBatch] = []
        if self.size_bytes > 0:
            batches.extend(self._read_persisted())
        batches.extend(self._pending)
        return batches_to_data(batches, self.dim)

    def close(self) -> None:
        if self._closed:
            return
        if self.read_only:
            self._closed = True
            return
        try:
            self.flush()
        finally:
            self._closed = True

    @staticmethod
    def read_dim(path: Path) -> int:
        """Vector dimension recorded in an existing index file."""
        try:
            with pa.OSFile(str(path), "rb") as source:
                schema = pa.ipc.open_stream(source).schema
        except pa.ArrowInvalid as e:
            raise FormatError(f"cannot read index {path}: {e}") from e

        if "vector" not in schema.names:
            raise FormatError(f"{path} has no vector column")
        vector_type = schema.field("vector").type
        if not pa.types.is_fixed_size_list(vector_type):
            raise FormatError(f"{path} vector column is {vector_type}")
        return vector_type.list_size

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError(f"index {self.path} is closed")

    def _check_writable(self) -> None:
        self._check_open()
        if self.read_only:
            raise ValueError(f"index {self.path} is opened read-only")

    def _write_new(self, batches: Sequence[pa.RecordBatch]) -> None:
        data = encode_stream(self.schema, batches)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".index_", suffix=".tmp", dir=self.path.parent
        )
        try:
            with open(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _open_source(self) -> pa.NativeFile:
        if self._read_limit is None:
            return pa.OSFile(str(self.path), "rb")
        with open(self.path, "rb") as f:
            return pa.BufferReader(f.read(self._read_limit))

    def _read_persisted(self) -> list[pa.RecordBatch]:
        try:
            with self._open_source() as source:
                reader = pa.ipc.open_stream(source)
                if not reader.schema.equals(self.schema):
                    raise FormatError(
                        f"{self.path} schema {reader.schema} does not match "
                        f"dim={self.dim}"
                    )
                return list(reader)
        except pa.ArrowInvalid as e:
            raise FormatError(f"cannot read index {self.path}: {e}") from e

    def _validate_existing(self, header: bytes) -> None:
        size = self.size_bytes
        with open(self.path, "rb") as f:
            prefix = f.read(len(header))
            tail = b""
            if size >= len(header) + EOS_SIZE:
                f.seek(size - EOS_SIZE)
                tail = f.read(EOS_SIZE)

        if prefix != header:
            raise FormatError(
                f"{self.path} does not start with the schema header for "
                f"dim={self.dim}"
            )
        if tail == EOS_MARKER:
            return
        if self.read_only:
            self._read_limit = self._complete_messages_end()
            if self._read_limit < len(header):
                raise FormatError(
                    f"{self.path} has no complete schema message"
                )
            logger.debug(
                "index tail not terminated, reading complete messages",
                path=str(self.path),
                size=size,
                read_limit=self._read_limit,
            )
        else:
            self._repair_tail(size)

    def _repair_tail(self, size: int) -> None:
        """Cut a torn trailing message left by a crash and restore EOS."""
        good_end = self._complete_messages_end()
        if good_end < len(self.schema_header):
            raise FormatError(f"{self.path} has no complete schema message")

        logger.warning(
            "repairing index tail",
            path=str(self.path),
            size=size,
            truncated_to=good_end,
        )
        with open(self.path, "r+b") as f:
            f.truncate(good_end)
            f.seek(good_end)
            f.write(EOS_MARKER)
            f.flush()
            os.fsync(f.fileno())

    def _complete_messages_end(self) -> int:
        good_end = 0
        with pa.OSFile(str(self.path), "rb") as source:
            reader = pa.ipc.MessageReader.open_stream(source)
            while True:
                try:
                    reader.read_next_message()
                except StopIteration:
                    break
                except (pa.ArrowInvalid, OSError) as e:
                    logger.warning(
                        "torn index message",
                        path=str(self.path),
                        offset=good_end,
                        error=str(e),
                    )
                    break
                good_end = source.tell()
        return good_end
