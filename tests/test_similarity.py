"""Tests for cosine similarity and the in-memory similarity index."""

import numpy as np
import pytest

from embedkit.embeddings import CachedEmbedding, SimilarityIndex, hash_content
from embedkit.embeddings.similarity import batch_cosine_similarity, cosine_similarity


class TestCosineSimilarity:
    def test_identical(self):
        v = np.array([1.0, 2.0, 3.0])
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity(np.array([1.0, 1.0]), np.array([-1.0, -1.0])) == pytest.approx(-1.0)

    def test_zero_vector(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_batch_matches_pairwise(self):
        rng = np.random.default_rng(0)
        query = rng.standard_normal(8).astype(np.float32)
        matrix = rng.standard_normal((5, 8)).astype(np.float32)

        scores = batch_cosine_similarity(query, matrix)

        expected = [cosine_similarity(query, row) for row in matrix]
        np.testing.assert_allclose(scores, expected, rtol=1e-5)

    def test_batch_zero_rows(self):
        matrix = np.array([[0.0, 0.0], [1.0, 0.0]], dtype=np.float32)
        scores = batch_cosine_similarity(np.array([1.0, 0.0], dtype=np.float32), matrix)
        np.testing.assert_allclose(scores, [0.0, 1.0])


class TestSimilarityIndex:
    """Index built from cache export rows."""

    @pytest.fixture
    def entries(self):
        return [
            CachedEmbedding(hash_content("east"), np.array([1.0, 0.0, 0.0], dtype=np.float32)),
            CachedEmbedding(hash_content("north"), np.array([0.0, 1.0, 0.0], dtype=np.float32)),
            CachedEmbedding(hash_content("north-east"), np.array([0.7, 0.7, 0.0], dtype=np.float32)),
        ]

    def test_search_orders_best_first(self, entries):
        index = SimilarityIndex.from_entries(entries)
        matches = index.search(np.array([1.0, 0.1, 0.0]), top_k=3)

        assert [m.hash for m in matches] == [
            hash_content("east"),
            hash_content("north-east"),
            hash_content("north"),
        ]
        assert matches[0].score > matches[1].score > matches[2].score

    def test_top_k_limits_results(self, entries):
        index = SimilarityIndex.from_entries(entries)
        assert len(index.search(np.array([0.0, 1.0, 0.0]), top_k=1)) == 1
        assert len(index.search(np.array([0.0, 1.0, 0.0]), top_k=10)) == 3

    def test_empty_index(self):
        index = SimilarityIndex.from_entries([])
        assert len(index) == 0
        assert index.search(np.ones(3)) == []

    def test_skips_empty_and_mismatched_rows(self, entries):
        entries.append(CachedEmbedding(hash_content("empty"), np.array([], dtype=np.float32)))
        entries.append(CachedEmbedding(hash_content("wide"), np.ones(5, dtype=np.float32)))

        index = SimilarityIndex.from_entries(entries)

        assert len(index) == 3
        assert hash_content("wide") not in index.hashes

    def test_query_dimension_mismatch(self, entries):
        index = SimilarityIndex.from_entries(entries)
        with pytest.raises(ValueError, match="dimension"):
            index.search(np.ones(4))

    def test_from_cache_export(self, cache):
        rng = np.random.default_rng(1)
        for text in ["alpha", "beta", "gamma"]:
            cache.set(text, rng.standard_normal(16).astype(np.float32))

        index = SimilarityIndex.from_entries(cache.get_all_embeddings())
        (best,) = index.search(cache.get("beta"), top_k=1)

        assert best.hash == hash_content("beta")
        assert best.score == pytest.approx(1.0, abs=1e-5)
