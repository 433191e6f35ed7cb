"""Brute-force cosine top-k over the index vector column.

A full scan is O(N*D) and is fast enough for tens of thousands of chunks;
no approximate index is built.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class SearchHit:
    index: int
    score: float


def cosine_scores(
    query: np.ndarray, vectors: np.ndarray, norms: np.ndarray
) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``vectors``.

    Rows with a zero stored norm score NaN: they have no direction.
    """
    q = np.asarray(query, dtype=np.float64).reshape(-1)
    query_norm = float(np.sqrt(np.dot(q, q)))
    norms = np.asarray(norms, dtype=np.float64)

    scores = np.full(norms.shape[0], np.nan, dtype=np.float64)
    if query_norm == 0.0 or norms.shape[0] == 0:
        return scores

    valid = norms != 0.0
    dots = np.asarray(vectors, dtype=np.float64)[valid] @ q
    scores[valid] = dots / (query_norm * norms[valid])
    return scores


def top_k(
    query: np.ndarray, vectors: np.ndarray, norms: np.ndarray, k: int
) -> list[SearchHit]:
    """Rank stored vectors by cosine similarity to ``query``.

    Returns at most ``k`` hits sorted by descending score. Ties keep
    index order. A zero query, ``k <= 0`` or no scorable rows give ``[]``.
    """
    if k <= 0 or len(norms) == 0:
        return []

    q = np.asarray(query, dtype=np.float64).reshape(-1)
    if not np.any(q):
        return []

    scores = cosine_scores(q, vectors, norms)
    candidates = np.flatnonzero(~np.isnan(scores))
    if candidates.size == 0:
        return []

    order = np.argsort(-scores[candidates], kind="stable")[:k]
    return [
        SearchHit(index=int(candidates[i]), score=float(scores[candidates[i]]))
        for i in order
    ]
