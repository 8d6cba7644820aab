"""Tests for the EmbeddingService facade."""

import asyncio
from dataclasses import replace
from unittest.mock import MagicMock

import numpy as np
import pytest

from embedkit.config import CacheConfig, ServiceConfig
from embedkit.embeddings import EmbeddingCache, MockGenerator, SimilarityIndex
from embedkit.exceptions import (
    DimensionMismatchError,
    StorageError,
    WorkerCrashedError,
    WorkerError,
)
from embedkit.service import EmbeddingService
from embedkit.worker import EmbeddingWorker, WorkerState

from .conftest import TEST_DIMENSIONS


class FakeWorker:
    """In-process stand-in for EmbeddingWorker."""

    def __init__(self, dimensions: int = TEST_DIMENSIONS, fail_with: Exception | None = None) -> None:
        self.generator = MockGenerator(dimensions=dimensions)
        self.fail_with = fail_with
        self.state = WorkerState.NOT_SPAWNED
        self.calls: list[str] = []

    async def spawn(self) -> None:
        self.state = WorkerState.SPAWNING

    async def wait_until_ready(self, timeout_ms=None) -> None:
        self.state = WorkerState.READY

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.fail_with is not None:
            raise self.fail_with
        return self.generator.embed(text)

    async def shutdown(self) -> None:
        self.state = WorkerState.TERMINATED


@pytest.fixture
def fake_workers():
    """Factory that records every FakeWorker it builds."""
    created: list[FakeWorker] = []

    def factory(**kwargs):
        def build():
            worker = FakeWorker(**kwargs)
            created.append(worker)
            return worker

        return build

    factory.created = created
    return factory


class TestEndToEnd:
    """Facade backed by the real worker process (mock provider)."""

    def test_miss_then_hit(self, service_config):
        async def scenario():
            async with EmbeddingService(service_config) as service:
                first = await service.embed("hello")
                second = await service.embed("hello")
                return first, second, service.get_stats()

        first, second, stats = asyncio.run(scenario())

        assert first.from_cache is False
        assert first.embedding.shape == (TEST_DIMENSIONS,)
        assert second.from_cache is True
        np.testing.assert_allclose(second.embedding, first.embedding)
        assert stats.cache_hits == 1
        assert stats.cache_misses == 1
        assert stats.total_embeddings == 1

    def test_default_dimensions_is_384(self, temp_cache_dir):
        config = ServiceConfig(cache_dir=temp_cache_dir, provider="mock")

        async def scenario():
            async with EmbeddingService(config) as service:
                return await service.embed("hello")

        result = asyncio.run(scenario())
        assert result.embedding.shape == (384,)
        assert result.from_cache is False

    def test_cache_persists_across_services(self, service_config):
        async def embed_once():
            async with EmbeddingService(service_config) as service:
                return await service.embed("persisted")

        first = asyncio.run(embed_once())
        second = asyncio.run(embed_once())

        assert first.from_cache is False
        assert second.from_cache is True
        np.testing.assert_allclose(second.embedding, first.embedding)
        assert service_config.db_path.exists()

    def test_concurrent_different_texts(self, service_config):
        texts = [f"text number {i}" for i in range(8)]

        async def scenario():
            async with EmbeddingService(service_config) as service:
                return await service.embed_batch(texts)

        results = asyncio.run(scenario())
        generator = MockGenerator(dimensions=TEST_DIMENSIONS)
        for text, result in zip(texts, results):
            np.testing.assert_allclose(result.embedding, generator.embed(text), rtol=1e-6)

    def test_concurrent_same_text_converges(self, service_config):
        async def scenario():
            async with EmbeddingService(service_config) as service:
                results = await asyncio.gather(*(service.embed("same") for _ in range(4)))
                again = await service.embed("same")
                return results, again

        results, again = asyncio.run(scenario())
        for result in results:
            np.testing.assert_allclose(result.embedding, results[0].embedding)
        assert again.from_cache is True

    def test_worker_crash_surfaces_then_restarts(self, service_config):
        # First worker is slow enough to be killed mid-request
        delays = iter([5000, 0])

        def factory():
            return EmbeddingWorker(replace(service_config.worker_config, mock_delay_ms=next(delays)))

        async def scenario():
            async with EmbeddingService(service_config, worker_factory=factory) as service:
                first_worker = service.worker
                task = asyncio.create_task(service.embed("doomed"))
                for _ in range(500):
                    if first_worker.pending_count:
                        break
                    await asyncio.sleep(0.01)
                first_worker._process.kill()

                with pytest.raises(WorkerCrashedError):
                    await task

                result = await service.embed("recovered")
                return result, service.get_stats(), service.worker is not first_worker

        result, stats, replaced = asyncio.run(scenario())
        assert result.from_cache is False
        assert stats.worker_restarts == 1
        assert replaced


class TestInitialization:
    """initialize() contract."""

    def test_embed_auto_initializes(self, service_config, fake_workers):
        async def scenario():
            service = EmbeddingService(service_config, worker_factory=fake_workers())
            result = await service.embed("lazy")
            stats = service.get_stats()
            await service.shutdown()
            return result, stats

        result, stats = asyncio.run(scenario())
        assert result.from_cache is False
        assert stats.model_loaded is True
        assert len(fake_workers.created) == 1

    def test_initialize_is_idempotent(self, service_config, fake_workers):
        async def scenario():
            service = EmbeddingService(service_config, worker_factory=fake_workers())
            await asyncio.gather(service.initialize(), service.initialize())
            await service.initialize()
            await service.shutdown()

        asyncio.run(scenario())
        assert len(fake_workers.created) == 1

    def test_failed_worker_start_propagates(self, service_config):
        worker = MagicMock()

        async def spawn():
            pass

        async def wait_until_ready(timeout_ms=None):
            raise WorkerError("Init failed: model not found")

        async def shutdown():
            pass

        worker.spawn = spawn
        worker.wait_until_ready = wait_until_ready
        worker.shutdown = shutdown

        async def scenario():
            service = EmbeddingService(service_config, worker_factory=lambda: worker)
            with pytest.raises(WorkerError):
                await service.initialize()
            with pytest.raises(WorkerError):
                await service.embed("anything")
            await service.shutdown()

        asyncio.run(scenario())

    def test_stats_before_initialize(self, service_config):
        stats = EmbeddingService(service_config).get_stats()
        assert stats.worker_state == "not_spawned"
        assert stats.model_loaded is False
        assert stats.avg_time_ms == 0.0


class TestCacheFirst:
    """Cache lookups short-circuit the worker."""

    def test_hit_skips_worker(self, service_config, fake_workers):
        async def scenario():
            async with EmbeddingService(service_config, worker_factory=fake_workers()) as service:
                await service.embed("repeat")
                await service.embed("repeat")
                await service.embed("repeat")

        asyncio.run(scenario())
        assert fake_workers.created[0].calls == ["repeat"]

    def test_prepopulated_cache_hit(self, service_config, fake_workers):
        cache = EmbeddingCache(service_config.db_path, CacheConfig(dimensions=TEST_DIMENSIONS))
        cache.set("known", np.ones(TEST_DIMENSIONS, dtype=np.float32))

        async def scenario():
            async with EmbeddingService(service_config, cache=cache, worker_factory=fake_workers()) as service:
                return await service.embed("known")

        result = asyncio.run(scenario())
        assert result.from_cache is True
        np.testing.assert_array_equal(result.embedding, np.ones(TEST_DIMENSIONS))
        assert fake_workers.created[0].calls == []

    def test_failed_embed_is_not_cached_or_retried(self, service_config, fake_workers):
        async def scenario():
            factory = fake_workers(fail_with=WorkerError("boom"))
            async with EmbeddingService(service_config, worker_factory=factory) as service:
                with pytest.raises(WorkerError):
                    await service.embed("fails")
                return service.cache.has("fails")

        assert asyncio.run(scenario()) is False
        assert fake_workers.created[0].calls == ["fails"]

    def test_storage_error_is_not_a_miss(self, service_config, fake_workers):
        async def scenario():
            async with EmbeddingService(service_config, worker_factory=fake_workers()) as service:
                service.cache.close()
                with pytest.raises(StorageError):
                    await service.embed("unreadable")

        asyncio.run(scenario())
        assert fake_workers.created[0].calls == []


class TestClearCache:
    def test_clear_cache_forces_recompute(self, service_config, fake_workers):
        async def scenario():
            async with EmbeddingService(service_config, worker_factory=fake_workers()) as service:
                await service.embed("again")
                service.clear_cache()
                result = await service.embed("again")
                return result, service.cache.get_stats()

        result, cache_stats = asyncio.run(scenario())
        assert result.from_cache is False
        assert cache_stats.size == 1
        assert fake_workers.created[0].calls == ["again", "again"]


class TestDimensionInvariant:
    """Vectors of the wrong length are fatal, never truncated or padded."""

    def test_mismatched_worker_output(self, service_config, fake_workers):
        async def scenario():
            factory = fake_workers(dimensions=TEST_DIMENSIONS + 1)
            async with EmbeddingService(service_config, worker_factory=factory) as service:
                with pytest.raises(DimensionMismatchError) as exc_info:
                    await service.embed("wrong size")
                return exc_info.value, service.cache.has("wrong size")

        error, cached = asyncio.run(scenario())
        assert error.expected == TEST_DIMENSIONS
        assert error.actual == TEST_DIMENSIONS + 1
        assert cached is False


class TestRestartPolicy:
    """Crashed workers are replaced up to max_restarts."""

    def test_restart_limit(self, service_config, fake_workers):
        config = replace(service_config, max_restarts=1)

        async def scenario():
            service = EmbeddingService(config, worker_factory=fake_workers())
            await service.initialize()
            service.worker.state = WorkerState.TERMINATED

            await service.embed("first restart")
            assert service.restarts == 1

            service.worker.state = WorkerState.TERMINATED
            service.worker.fail_with = WorkerCrashedError("gone")
            with pytest.raises(WorkerCrashedError):
                await service.embed("no more restarts")
            assert service.restarts == 1
            await service.shutdown()

        asyncio.run(scenario())
        assert len(fake_workers.created) == 2


class TestHelpers:
    """Generator adapter, bulk export and stats."""

    def test_get_generator(self, service_config, fake_workers):
        async def scenario():
            async with EmbeddingService(service_config, worker_factory=fake_workers()) as service:
                generate = service.get_generator()
                return await generate("adapter")

        embedding = asyncio.run(scenario())
        np.testing.assert_allclose(embedding, MockGenerator(TEST_DIMENSIONS).embed("adapter"))

    def test_get_all_embeddings_builds_similarity_index(self, service_config, fake_workers):
        async def scenario():
            async with EmbeddingService(service_config, worker_factory=fake_workers()) as service:
                await service.embed_batch(["a", "b", "c"])
                index = SimilarityIndex.from_entries(service.get_all_embeddings())
                query = (await service.embed("b")).embedding
                return index.search(query, top_k=1)

        (best,) = asyncio.run(scenario())
        assert best.score == pytest.approx(1.0, abs=1e-5)

    def test_stats_to_dict(self, service_config, fake_workers):
        async def scenario():
            async with EmbeddingService(service_config, worker_factory=fake_workers()) as service:
                await service.embed("x")
                return service.get_stats()

        stats = asyncio.run(scenario())
        data = stats.to_dict()
        assert data["total_embeddings"] == 1
        assert data["worker_state"] == "ready"
        assert stats.avg_time_ms >= 0.0

    def test_get_dimensions(self, service_config):
        assert EmbeddingService(service_config).get_dimensions() == TEST_DIMENSIONS
