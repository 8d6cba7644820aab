"""Offline text embeddings with a persistent cache and an isolated model worker."""

from .config import CacheConfig, EmbeddingProvider, ServiceConfig, WorkerConfig
from .embeddings import CachedEmbedding, CacheStats, EmbeddingCache, SimilarityIndex
from .exceptions import (
    DimensionMismatchError,
    EmbeddingError,
    NotReadyError,
    RequestTooLargeError,
    StorageError,
    WorkerCrashedError,
    WorkerError,
    WorkerShutdownError,
    WorkerTimeoutError,
)
from .service import EmbeddingService, EmbedResult, ServiceStats
from .worker import EmbeddingWorker, WorkerState

__version__ = "0.1.0"

__all__ = [
    # Service
    "EmbeddingService",
    "EmbedResult",
    "ServiceStats",
    # Cache
    "EmbeddingCache",
    "CacheStats",
    "CachedEmbedding",
    "SimilarityIndex",
    # Worker
    "EmbeddingWorker",
    "WorkerState",
    # Config
    "CacheConfig",
    "WorkerConfig",
    "ServiceConfig",
    "EmbeddingProvider",
    # Errors
    "EmbeddingError",
    "NotReadyError",
    "RequestTooLargeError",
    "WorkerTimeoutError",
    "WorkerError",
    "WorkerCrashedError",
    "WorkerShutdownError",
    "DimensionMismatchError",
    "StorageError",
]
