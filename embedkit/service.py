"""Embedding service: persistent cache in front of the worker process.

This is the one entry point consumers use:

    async with EmbeddingService(ServiceConfig(cache_dir=...)) as service:
        result = await service.embed("hello")
        result.embedding, result.from_cache

A cache hit never touches the worker. On a miss the text is embedded by the
worker and stored before returning, so repeating the call is a hit. Failed
embeds are not retried; that is the caller's decision.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

from .config import ServiceConfig
from .embeddings.cache import CachedEmbedding, EmbeddingCache
from .embeddings.generator import check_dimensions
from .worker.client import EmbeddingWorker, WorkerState

logger = logging.getLogger(__name__)

EmbedFunction = Callable[[str], Awaitable[np.ndarray]]


@dataclass
class EmbedResult:
    """An embedding plus where it came from."""

    embedding: np.ndarray
    from_cache: bool
    time_ms: float = 0.0


@dataclass
class ServiceStats:
    """Aggregate statistics for one EmbeddingService."""

    total_embeddings: int
    cache_hits: int
    cache_misses: int
    avg_time_ms: float
    total_time_ms: float
    model_loaded: bool
    worker_state: str
    worker_restarts: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_embeddings": self.total_embeddings,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "avg_time_ms": self.avg_time_ms,
            "total_time_ms": self.total_time_ms,
            "model_loaded": self.model_loaded,
            "worker_state": self.worker_state,
            "worker_restarts": self.worker_restarts,
        }


class EmbeddingService:
    """Cache-first embedding facade over an EmbeddingWorker."""

    def __init__(
        self,
        config: ServiceConfig | None = None,
        cache: EmbeddingCache | None = None,
        worker_factory: Callable[[], EmbeddingWorker] | None = None,
    ) -> None:
        """
        Args:
            config: Service settings (cache_dir, show_progress, limits, provider)
            cache: Pre-opened cache to use instead of opening config.db_path
            worker_factory: Builds worker instances (initial and restarts)
        """
        self.config = config or ServiceConfig()
        self._cache = cache
        self._worker_factory = worker_factory or (lambda: EmbeddingWorker(self.config.worker_config))
        self._worker: EmbeddingWorker | None = None
        self._init_lock: asyncio.Lock | None = None
        self._initialized = False
        self.restarts = 0

        self.total_embeddings = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.total_time_ms = 0.0

    @property
    def cache(self) -> EmbeddingCache:
        """The open cache. Opens it on first access."""
        if self._cache is None:
            logger.debug(f"Opening embedding cache at {self.config.db_path}")
            self._cache = EmbeddingCache(self.config.db_path, self.config.cache_config)
        return self._cache

    @property
    def worker(self) -> EmbeddingWorker | None:
        return self._worker

    def get_dimensions(self) -> int:
        return self.config.dimensions

    async def initialize(self) -> None:
        """Open the cache and start the worker, waiting until the model is loaded.

        Safe to call repeatedly; later calls return immediately.

        Raises:
            StorageError: If the cache database cannot be opened
            WorkerError / WorkerCrashedError / WorkerTimeoutError: If the worker fails to start
        """
        if self._initialized:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()

        async with self._init_lock:
            if self._initialized:
                return
            _ = self.cache
            await self._start_worker()
            self._initialized = True

    async def _start_worker(self) -> None:
        worker = self._worker_factory()
        self._worker = worker
        start = time.perf_counter()
        await worker.spawn()
        try:
            await worker.wait_until_ready()
        except BaseException:
            await worker.shutdown()
            raise
        logger.info(f"Embedding worker ready in {time.perf_counter() - start:.1f}s")

    async def _ensure_worker(self) -> EmbeddingWorker:
        """Return a ready worker, restarting a crashed one within max_restarts."""
        assert self._init_lock is not None
        async with self._init_lock:
            worker = self._worker
            if worker is not None and worker.state is not WorkerState.TERMINATED:
                return worker
            if self.restarts >= self.config.max_restarts:
                # Let the dead worker report its own state
                assert worker is not None
                return worker

            self.restarts += 1
            logger.warning(f"Restarting embedding worker ({self.restarts}/{self.config.max_restarts})")
            await self._start_worker()
            assert self._worker is not None
            return self._worker

    async def embed(self, text: str) -> EmbedResult:
        """Embed text, serving from the cache when possible.

        Initializes the service on first use.

        Raises:
            StorageError: If the cache cannot be read or written
            NotReadyError: If the worker is gone and may not be restarted
            WorkerTimeoutError / WorkerError / WorkerCrashedError / WorkerShutdownError
            DimensionMismatchError: If the worker produced a vector of the wrong length
        """
        if not self._initialized:
            await self.initialize()

        start = time.perf_counter()
        cached = self.cache.get(text)
        if cached is not None:
            self.cache_hits += 1
            return EmbedResult(
                embedding=cached,
                from_cache=True,
                time_ms=(time.perf_counter() - start) * 1000,
            )
        self.cache_misses += 1

        worker = await self._ensure_worker()
        embedding = check_dimensions(await worker.embed(text), self.config.dimensions)
        self.cache.set(text, embedding)

        time_ms = (time.perf_counter() - start) * 1000
        self.total_embeddings += 1
        self.total_time_ms += time_ms
        return EmbedResult(embedding=embedding, from_cache=False, time_ms=time_ms)

    async def embed_batch(self, texts: list[str]) -> list[EmbedResult]:
        """Embed several texts concurrently. Results keep the input order."""
        if not self._initialized:
            await self.initialize()
        return list(await asyncio.gather(*(self.embed(text) for text in texts)))

    def get_generator(self) -> EmbedFunction:
        """An async `text -> vector` callable for workflows that only need vectors."""

        async def generate(text: str) -> np.ndarray:
            return (await self.embed(text)).embedding

        return generate

    def get_all_embeddings(self) -> list[CachedEmbedding]:
        """Read-only bulk access to cached vectors, e.g. for similarity indexes."""
        return self.cache.get_all_embeddings()

    def clear_cache(self) -> None:
        """Remove every cached embedding and reset the cache's hit/miss counters."""
        self.cache.clear()

    def get_stats(self) -> ServiceStats:
        worker_state = self._worker.state if self._worker else WorkerState.NOT_SPAWNED
        return ServiceStats(
            total_embeddings=self.total_embeddings,
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
            avg_time_ms=self.total_time_ms / self.total_embeddings if self.total_embeddings else 0.0,
            total_time_ms=self.total_time_ms,
            model_loaded=worker_state is WorkerState.READY,
            worker_state=worker_state.value,
            worker_restarts=self.restarts,
        )

    async def shutdown(self) -> None:
        """Stop the worker and close the cache."""
        try:
            if self._worker is not None:
                await self._worker.shutdown()
        finally:
            if self._cache is not None:
                self._cache.close()
                self._cache = None
            self._initialized = False

    async def __aenter__(self) -> "EmbeddingService":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()
