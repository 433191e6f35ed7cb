import numpy as np
import pytest

from turnstore.similarity import SearchHit, cosine_scores, top_k


@pytest.fixture
def stored():
    vectors = np.array(
        [
            [1.0, 0.0, 0.0],
            [0.0, 1.0, 0.0],
            [1.0, 1.0, 0.0],
            [0.0, 0.0, 2.0],
        ],
        dtype=np.float32,
    )
    norms = np.linalg.norm(vectors.astype(np.float64), axis=1)
    return vectors, norms


class TestTopK:
    def test_exact_match_ranks_first(self, stored):
        vectors, norms = stored
        hits = top_k(vectors[2], vectors, norms, k=4)
        assert hits[0].index == 2
        assert hits[0].score == pytest.approx(1.0)

    def test_scores_non_increasing(self, stored):
        vectors, norms = stored
        hits = top_k(np.array([1.0, 0.5, 0.2]), vectors, norms, k=4)
        scores = [h.score for h in hits]
        assert scores == sorted(scores, reverse=True)

    def test_k_limits_results(self, stored):
        vectors, norms = stored
        assert len(top_k(vectors[0], vectors, norms, k=2)) == 2

    def test_k_larger_than_candidates(self, stored):
        vectors, norms = stored
        assert len(top_k(vectors[0], vectors, norms, k=100)) == 4

    @pytest.mark.parametrize("k", [0, -1])
    def test_non_positive_k(self, stored, k):
        vectors, norms = stored
        assert top_k(vectors[0], vectors, norms, k=k) == []

    def test_zero_query(self, stored):
        vectors, norms = stored
        assert top_k(np.zeros(3), vectors, norms, k=3) == []

    def test_empty_candidates(self):
        assert top_k(np.ones(3), np.empty((0, 3)), np.empty(0), k=3) == []

    def test_zero_norm_rows_skipped(self):
        vectors = np.array([[0.0, 0.0], [1.0, 0.0]], dtype=np.float32)
        norms = np.array([0.0, 1.0])
        hits = top_k(np.array([1.0, 0.0]), vectors, norms, k=5)
        assert hits == [SearchHit(index=1, score=pytest.approx(1.0))]

    def test_ties_keep_index_order(self):
        vectors = np.array([[1.0, 0.0]] * 3, dtype=np.float32)
        norms = np.ones(3)
        hits = top_k(np.array([2.0, 0.0]), vectors, norms, k=3)
        assert [h.index for h in hits] == [0, 1, 2]

    def test_uses_stored_norms(self):
        # stored norm is trusted rather than recomputed
        vectors = np.array([[1.0, 0.0]], dtype=np.float32)
        hits = top_k(np.array([1.0, 0.0]), vectors, np.array([2.0]), k=1)
        assert hits[0].score == pytest.approx(0.5)


class TestCosineScores:
    def test_matches_manual_cosine(self, stored):
        vectors, norms = stored
        q = np.array([0.3, 0.4, 0.5])
        scores = cosine_scores(q, vectors, norms)
        expected = vectors @ q / (np.linalg.norm(q) * norms)
        np.testing.assert_allclose(scores, expected, rtol=1e-6)

    def test_zero_norm_is_nan(self):
        scores = cosine_scores(
            np.ones(2), np.zeros((1, 2), dtype=np.float32), np.zeros(1)
        )
        assert np.isnan(scores[0])
