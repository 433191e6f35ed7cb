import asyncio

import numpy as np
import pytest
from conftest import AsyncHashEmbedding, BatchHashEmbedding, HashEmbedding
from structlog.testing import capture_logs

from turnstore.embeddings import (
    EmbeddingProvider,
    SentenceTransformerProvider,
    embed_text,
    embed_texts,
)
from turnstore.errors import EmbeddingError


class WrongDimEmbedding:
    dim = 4

    def embed(self, text: str) -> np.ndarray:
        return np.ones(3, dtype=np.float32)


class ShortBatchEmbedding(HashEmbedding):
    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        return [self.vector(t) for t in texts[:-1]]


def test_providers_satisfy_protocol():
    assert isinstance(HashEmbedding(), EmbeddingProvider)
    assert isinstance(AsyncHashEmbedding(), EmbeddingProvider)


@pytest.mark.asyncio
class TestEmbedText:
    async def test_sync_provider(self):
        provider = HashEmbedding(dim=8)
        vec = await embed_text(provider, "hello")
        assert vec.shape == (8,)
        assert vec.dtype == np.float32
        assert provider.calls == ["hello"]

    async def test_async_provider(self):
        provider = AsyncHashEmbedding(dim=8)
        vec = await embed_text(provider, "hello")
        np.testing.assert_array_equal(vec, provider.vector("hello"))

    async def test_list_output_is_coerced(self):
        class ListEmbedding:
            dim = 2

            def embed(self, text):
                return [1.0, 2.0]

        vec = await embed_text(ListEmbedding(), "x")
        assert vec.dtype == np.float32
        assert vec.tolist() == [1.0, 2.0]

    async def test_provider_error_is_wrapped(self):
        provider = HashEmbedding()
        provider.fail = True
        with pytest.raises(EmbeddingError) as exc_info:
            await embed_text(provider, "x")
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    async def test_wrong_dimension(self):
        with pytest.raises(EmbeddingError):
            await embed_text(WrongDimEmbedding(), "x")

    async def test_cancel_before_start(self):
        provider = HashEmbedding()
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(asyncio.CancelledError):
            await embed_text(provider, "x", cancel)
        assert provider.calls == []


@pytest.mark.asyncio
class TestEmbedTexts:
    async def test_empty(self):
        assert await embed_texts(HashEmbedding(), []) == []

    async def test_uses_embed_batch(self):
        provider = BatchHashEmbedding()
        vecs = await embed_texts(provider, ["a", "b", "c"])
        assert len(vecs) == 3
        assert provider.batch_calls == [["a", "b", "c"]]
        assert provider.calls == []

    async def test_falls_back_to_embed(self):
        provider = HashEmbedding()
        vecs = await embed_texts(provider, ["a", "b"])
        assert len(vecs) == 2
        assert provider.calls == ["a", "b"]

    async def test_batch_count_mismatch(self):
        with pytest.raises(EmbeddingError):
            await embed_texts(ShortBatchEmbedding(), ["a", "b"])

    async def test_batch_error_is_wrapped(self):
        provider = BatchHashEmbedding()
        provider.fail = True
        with pytest.raises(EmbeddingError):
            await embed_texts(provider, ["a"])


class FakeSentenceModel:
    """Stand-in for a loaded SentenceTransformer: one token per word."""

    max_seq_length = 4

    def tokenizer(self, texts, add_special_tokens=True):
        return {"input_ids": [t.split() for t in texts]}

    def encode(self, texts, **kwargs):
        return np.ones((len(texts), 3), dtype=np.float32)


@pytest.fixture
def st_provider():
    provider = SentenceTransformerProvider.__new__(SentenceTransformerProvider)
    provider._model_name = "fake-model"
    provider._device = "cpu"
    provider._model = FakeSentenceModel()
    provider._dim = 3
    return provider


class TestSentenceTransformerProvider:
    def test_long_text_is_embedded_whole_and_logged(self, st_provider):
        with capture_logs() as logs:
            vecs = st_provider.embed_batch(["one two", "a b c d e f"])

        assert len(vecs) == 2
        warnings = [e for e in logs if e["log_level"] == "warning"]
        assert len(warnings) == 1
        assert warnings[0]["tokens"] == 6
        assert warnings[0]["max_seq_length"] == 4

    def test_short_text_not_logged(self, st_provider):
        with capture_logs() as logs:
            st_provider.embed("short text")
        assert logs == []
