"""Embedding provider contract and adapters.

The store only needs a fixed output dimension and a text -> vector call.
Providers may be synchronous (run in a worker thread) or expose coroutine
``embed`` / ``embed_batch`` methods (awaited directly).
"""

from __future__ import annotations

import asyncio
import inspect
import os
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

from turnstore.config import DEFAULT_EMBEDDING_MODEL
from turnstore.errors import EmbeddingError
from turnstore.logging_config import get_logger

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = get_logger(__name__)

@runtime_checkable
class EmbeddingProvider(Protocol):
    """Text to fixed-dimension vector.

    ``embed_batch(texts)`` is optional; when absent a batch is embedded one
    text at a time.
    """

    @property
    def dim(self) -> int: ...

    def embed(self, text: str) -> Any: ...


def _as_vector(raw: Any, dim: int) -> np.ndarray:
    vec = np.asarray(raw, dtype=np.float32).reshape(-1)
    if vec.shape[0] != dim:
        raise EmbeddingError(
            f"provider returned dimension {vec.shape[0]}, expected {dim}"
        )
    return vec


async def _call(fn, *args) -> Any:
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    return await asyncio.to_thread(fn, *args)


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise asyncio.CancelledError("embedding cancelled before start")


async def embed_text(
    provider: EmbeddingProvider,
    text: str,
    cancel: asyncio.Event | None = None,
) -> np.ndarray:
    """Embed one text as a single awaited call.

    Provider failures are raised as EmbeddingError with the original
    exception chained.
    """
    _check_cancel(cancel)
    try:
        raw = await _call(provider.embed, text)
    except (EmbeddingError, asyncio.CancelledError):
        raise
    except Exception as e:
        raise EmbeddingError(f"embedding failed: {e}") from e
    return _as_vector(raw, provider.dim)


async def embed_texts(
    provider: EmbeddingProvider,
    texts: Sequence[str],
    cancel: asyncio.Event | None = None,
) -> list[np.ndarray]:
    """Embed several texts, using ``embed_batch`` when the provider has it."""
    if not texts:
        return []

    batch_fn = getattr(provider, "embed_batch", None)
    if batch_fn is None:
        return [await embed_text(provider, t, cancel) for t in texts]

    _check_cancel(cancel)
    try:
        raw = await _call(batch_fn, list(texts))
    except (EmbeddingError, asyncio.CancelledError):
        raise
    except Exception as e:
        raise EmbeddingError(
            f"batch embedding failed for {len(texts)} text(s): {e}"
        ) from e

    vectors = [_as_vector(r, provider.dim) for r in raw]
    if len(vectors) != len(texts):
        raise EmbeddingError(
            f"provider returned {len(vectors)} vectors for {len(texts)} texts"
        )
    return vectors


def _get_device() -> str:
    """Detect best available device for inference."""
    try:
        import torch

        if torch.cuda.is_available():
            return "cuda"
        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            return "mps"
    except ImportError:
        pass
    return "cpu"


class SentenceTransformerProvider:
    """Wraps a sentence-transformers model for text embedding.

    Requires the ``embeddings`` extra. The model is loaded on construction.
    """

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        device: str | None = None,
    ) -> None:
        # pulls torch, so only imported when a provider is built
        from sentence_transformers import SentenceTransformer

        self._model_name = model
        self._device = device or os.environ.get("TURNSTORE_DEVICE") or (
            _get_device()
        )

        logger.info("loading embedding model", model=model, device=self._device)
        self._model: SentenceTransformer = SentenceTransformer(
            model, device=self._device
        )

        dim = self._model.get_sentence_embedding_dimension()
        if dim is None:
            raise ValueError(
                f"Model {model} does not report embedding dimension"
            )
        self._dim = int(dim)

    @property
    def model(self) -> str:
        return self._model_name

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def device(self) -> str:
        return self._device

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    @property
    def max_seq_length(self) -> int:
        """Tokens the model reads; longer chunks are cut by the model."""
        return int(self._model.max_seq_length)

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        self._log_truncation(texts)
        vecs = self._model.encode(
            list(texts),
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return list(vecs)

    def _log_truncation(self, texts: list[str]) -> None:
        limit = self.max_seq_length
        token_ids = self._model.tokenizer(
            list(texts), add_special_tokens=False
        )["input_ids"]
        for ids in token_ids:
            if len(ids) > limit:
                logger.warning(
                    "text exceeds model context, embedding covers its start",
                    model=self._model_name,
                    tokens=len(ids),
                    max_seq_length=limit,
                )
