from turnstore.config import StoreConfig
from turnstore.embeddings import (
    EmbeddingProvider,
    SentenceTransformerProvider,
    embed_text,
    embed_texts,
)
from turnstore.errors import EmbeddingError, FormatError, StoreLockedError
from turnstore.lock import StoreLock
from turnstore.rebuild import RebuildResult, rebuild_index
from turnstore.record_log import LogEntry, RecordLog
from turnstore.similarity import SearchHit, top_k
from turnstore.store import (
    MemoryStore,
    QueryResult,
    StoreStats,
    Turn,
    inspect_store,
)
from turnstore.vector_index import IndexData, IndexEntry, VectorIndex

__all__ = [
    "EmbeddingError",
    "EmbeddingProvider",
    "FormatError",
    "IndexData",
    "IndexEntry",
    "LogEntry",
    "MemoryStore",
    "QueryResult",
    "RebuildResult",
    "RecordLog",
    "SearchHit",
    "SentenceTransformerProvider",
    "StoreConfig",
    "StoreLock",
    "StoreLockedError",
    "StoreStats",
    "Turn",
    "VectorIndex",
    "embed_text",
    "embed_texts",
    "inspect_store",
    "rebuild_index",
    "top_k",
]
