import numpy as np
import pytest

from turnstore.config import StoreConfig


class HashEmbedding:
    """Deterministic embedding: character codes folded into ``dim`` buckets."""

    def __init__(self, dim: int = 32):
        self.dim = dim
        self.calls: list[str] = []
        self.fail = False

    def vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dim, dtype=np.float32)
        for i, ch in enumerate(text):
            vec[i % self.dim] += ord(ch) / 256
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec

    def embed(self, text: str) -> np.ndarray:
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        self.calls.append(text)
        return self.vector(text)


class BatchHashEmbedding(HashEmbedding):
    def __init__(self, dim: int = 32):
        super().__init__(dim)
        self.batch_calls: list[list[str]] = []

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        self.batch_calls.append(list(texts))
        return [self.vector(t) for t in texts]


class AsyncHashEmbedding(HashEmbedding):
    async def embed(self, text: str) -> np.ndarray:
        return super().embed(text)


@pytest.fixture
def provider():
    return HashEmbedding()


@pytest.fixture
def make_config(tmp_path, provider):
    def _make(**kwargs) -> StoreConfig:
        kwargs.setdefault("directory", tmp_path / "store")
        kwargs.setdefault("embedding_provider", provider)
        kwargs.setdefault("fsync", False)
        return StoreConfig(**kwargs)

    return _make
