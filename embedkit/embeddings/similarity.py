"""Cosine similarity over cached embeddings.

Used by enrichment/summarization code that builds ad hoc similarity
indexes from EmbeddingCache.get_all_embeddings().
"""

from dataclasses import dataclass

import numpy as np

from .cache import CachedEmbedding


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Cosine similarity score (-1 to 1), 0.0 if either vector is all zeros
    """
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b)) / denom


def batch_cosine_similarity(query: np.ndarray, embeddings: np.ndarray) -> np.ndarray:
    """
    Compute cosine similarity between a query and multiple embeddings.

    Args:
        query: Query vector of shape (embedding_dim,)
        embeddings: Matrix of shape (n, embedding_dim)

    Returns:
        Array of similarities of shape (n,)
    """
    norms = np.linalg.norm(embeddings, axis=1) * np.linalg.norm(query)
    scores = embeddings @ query
    return np.divide(scores, norms, out=np.zeros_like(scores, dtype=np.float32), where=norms > 0)


@dataclass
class SimilarityMatch:
    """One search hit: the cache key and its score."""

    hash: str
    score: float


class SimilarityIndex:
    """In-memory brute-force index over a snapshot of cached embeddings."""

    def __init__(self, hashes: list[str], matrix: np.ndarray) -> None:
        self.hashes = hashes
        self.matrix = matrix

    @classmethod
    def from_entries(cls, entries: list[CachedEmbedding]) -> "SimilarityIndex":
        """Build from cache rows. Rows whose length differs from the first are skipped."""
        entries = [e for e in entries if e.embedding.size]
        if not entries:
            return cls([], np.empty((0, 0), dtype=np.float32))

        dim = entries[0].embedding.shape[0]
        kept = [e for e in entries if e.embedding.shape[0] == dim]
        return cls([e.hash for e in kept], np.stack([e.embedding for e in kept]))

    def __len__(self) -> int:
        return len(self.hashes)

    def search(self, query: np.ndarray, top_k: int = 10) -> list[SimilarityMatch]:
        """Return up to top_k entries most similar to query, best first."""
        if not self.hashes:
            return []
        query = np.asarray(query, dtype=np.float32)
        if query.shape[0] != self.matrix.shape[1]:
            raise ValueError(f"Query has dimension {query.shape[0]}, index has {self.matrix.shape[1]}")

        scores = batch_cosine_similarity(query, self.matrix)
        order = np.argsort(-scores)[:top_k]
        return [SimilarityMatch(hash=self.hashes[i], score=float(scores[i])) for i in order]
