"""Shared pytest fixtures."""

import tempfile
from pathlib import Path

import pytest

from embedkit.config import CacheConfig, EmbeddingProvider, ServiceConfig, WorkerConfig
from embedkit.embeddings import EmbeddingCache

# Small vectors keep the mock worker fast; the real model uses 384
TEST_DIMENSIONS = 16


@pytest.fixture
def temp_cache_dir():
    """Create a temporary directory for the cache database and model files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_path(temp_cache_dir):
    """Path to a not-yet-created cache database."""
    return temp_cache_dir / "embeddings.db"


@pytest.fixture
def cache(db_path):
    """A file-backed cache with default TTL and capacity."""
    cache = EmbeddingCache(db_path, CacheConfig(dimensions=TEST_DIMENSIONS))
    yield cache
    cache.close()


@pytest.fixture
def worker_config(temp_cache_dir):
    """Worker settings using the mock provider (no model download)."""
    return WorkerConfig(
        cache_dir=temp_cache_dir,
        dimensions=TEST_DIMENSIONS,
        provider=EmbeddingProvider.MOCK,
        request_timeout_ms=10_000,
        init_timeout_ms=30_000,
    )


@pytest.fixture
def service_config(temp_cache_dir):
    """Service settings using the mock provider."""
    return ServiceConfig(
        cache_dir=temp_cache_dir,
        dimensions=TEST_DIMENSIONS,
        provider=EmbeddingProvider.MOCK,
        request_timeout_ms=10_000,
        init_timeout_ms=30_000,
    )
