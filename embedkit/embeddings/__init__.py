"""Embedding generation, persistent caching and similarity helpers."""

from .cache import CachedEmbedding, CacheStats, EmbeddingCache, hash_content
from .generator import EmbeddingGenerator, MockGenerator, check_dimensions, create_generator
from .similarity import (
    SimilarityIndex,
    SimilarityMatch,
    batch_cosine_similarity,
    cosine_similarity,
)

__all__ = [
    # Cache
    "EmbeddingCache",
    "CacheStats",
    "CachedEmbedding",
    "hash_content",
    # Generators
    "EmbeddingGenerator",
    "MockGenerator",
    "check_dimensions",
    "create_generator",
    # Similarity
    "SimilarityIndex",
    "SimilarityMatch",
    "cosine_similarity",
    "batch_cosine_similarity",
]
