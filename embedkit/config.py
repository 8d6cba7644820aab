"""Configuration objects for the cache, worker process and service facade.

All settings have defaults in constants.py. ServiceConfig.from_env() layers
EMBEDKIT_* environment variables on top (the CLI loads .env first).
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .constants import (
    DEFAULT_CACHE_DIR,
    DEFAULT_DB_FILENAME,
    DEFAULT_DIMENSIONS,
    DEFAULT_INIT_TIMEOUT_MS,
    DEFAULT_MAX_RESTARTS,
    DEFAULT_MAX_SIZE,
    DEFAULT_MODEL,
    DEFAULT_REQUEST_TIMEOUT_MS,
    DEFAULT_TTL_MS,
)

ENV_PREFIX = "EMBEDKIT_"


class EmbeddingProvider(str, Enum):
    """Backends the worker can host."""

    TRANSFORMERS = "transformers"  # sentence-transformers model
    MOCK = "mock"  # deterministic hash-based vectors, no model download


def default_cache_dir() -> Path:
    """Model/database directory, overridable with EMBEDKIT_CACHE_DIR."""
    return Path(os.environ.get(f"{ENV_PREFIX}CACHE_DIR", DEFAULT_CACHE_DIR)).expanduser()


def _require_positive(name: str, value: int) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


@dataclass
class CacheConfig:
    """Persistent embedding cache settings."""

    ttl_ms: int = DEFAULT_TTL_MS
    max_size: int = DEFAULT_MAX_SIZE
    dimensions: int = DEFAULT_DIMENSIONS

    def __post_init__(self) -> None:
        _require_positive("ttl_ms", self.ttl_ms)
        _require_positive("max_size", self.max_size)
        _require_positive("dimensions", self.dimensions)


@dataclass
class WorkerConfig:
    """Embedding worker process settings."""

    cache_dir: Path = field(default_factory=default_cache_dir)
    dimensions: int = DEFAULT_DIMENSIONS
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    init_timeout_ms: int = DEFAULT_INIT_TIMEOUT_MS
    provider: EmbeddingProvider | str = EmbeddingProvider.TRANSFORMERS
    model_name: str = DEFAULT_MODEL
    show_progress: bool = False
    mock_delay_ms: int = 0  # simulated per-request latency for the mock provider

    def __post_init__(self) -> None:
        self.cache_dir = Path(self.cache_dir).expanduser()
        _require_positive("dimensions", self.dimensions)
        _require_positive("request_timeout_ms", self.request_timeout_ms)
        _require_positive("init_timeout_ms", self.init_timeout_ms)

    def to_env(self) -> dict[str, str]:
        """Environment variables read by the worker process on startup."""
        provider = self.provider.value if isinstance(self.provider, EmbeddingProvider) else str(self.provider)
        return {
            f"{ENV_PREFIX}WORKER_CACHE_DIR": str(self.cache_dir),
            f"{ENV_PREFIX}WORKER_DIMENSIONS": str(self.dimensions),
            f"{ENV_PREFIX}WORKER_PROVIDER": provider,
            f"{ENV_PREFIX}WORKER_MODEL": self.model_name,
            f"{ENV_PREFIX}WORKER_SHOW_PROGRESS": "1" if self.show_progress else "0",
            f"{ENV_PREFIX}WORKER_MOCK_DELAY_MS": str(self.mock_delay_ms),
        }


@dataclass
class ServiceConfig:
    """Settings for the EmbeddingService facade."""

    cache_dir: Path = field(default_factory=default_cache_dir)
    show_progress: bool = False
    db_path: Path | None = None  # defaults to <cache_dir>/embeddings.db
    dimensions: int = DEFAULT_DIMENSIONS
    ttl_ms: int = DEFAULT_TTL_MS
    max_size: int = DEFAULT_MAX_SIZE
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    init_timeout_ms: int = DEFAULT_INIT_TIMEOUT_MS
    provider: EmbeddingProvider | str = EmbeddingProvider.TRANSFORMERS
    model_name: str = DEFAULT_MODEL
    max_restarts: int = DEFAULT_MAX_RESTARTS
    mock_delay_ms: int = 0

    def __post_init__(self) -> None:
        self.cache_dir = Path(self.cache_dir).expanduser()
        if self.db_path is None:
            self.db_path = self.cache_dir / DEFAULT_DB_FILENAME
        else:
            self.db_path = Path(self.db_path).expanduser()
        if self.max_restarts < 0:
            raise ValueError(f"max_restarts must be >= 0, got {self.max_restarts}")

    @property
    def cache_config(self) -> CacheConfig:
        return CacheConfig(ttl_ms=self.ttl_ms, max_size=self.max_size, dimensions=self.dimensions)

    @property
    def worker_config(self) -> WorkerConfig:
        return WorkerConfig(
            cache_dir=self.cache_dir,
            dimensions=self.dimensions,
            request_timeout_ms=self.request_timeout_ms,
            init_timeout_ms=self.init_timeout_ms,
            provider=self.provider,
            model_name=self.model_name,
            show_progress=self.show_progress,
            mock_delay_ms=self.mock_delay_ms,
        )

    @classmethod
    def from_env(cls, **overrides) -> "ServiceConfig":
        """Build a config from EMBEDKIT_* environment variables.

        Keyword overrides take precedence over the environment.
        """
        env = os.environ
        values: dict = {}

        if cache_dir := env.get(f"{ENV_PREFIX}CACHE_DIR"):
            values["cache_dir"] = Path(cache_dir)
        if db_path := env.get(f"{ENV_PREFIX}DB_PATH"):
            values["db_path"] = Path(db_path)
        for key in ("dimensions", "ttl_ms", "max_size", "request_timeout_ms", "init_timeout_ms"):
            raw = env.get(f"{ENV_PREFIX}{key.upper()}")
            if raw:
                try:
                    values[key] = int(raw)
                except ValueError:
                    raise ValueError(f"{ENV_PREFIX}{key.upper()} must be an integer, got {raw!r}") from None
        if provider := env.get(f"{ENV_PREFIX}PROVIDER"):
            values["provider"] = EmbeddingProvider(provider.lower())
        if model := env.get(f"{ENV_PREFIX}MODEL"):
            values["model_name"] = model
        if show_progress := env.get(f"{ENV_PREFIX}SHOW_PROGRESS"):
            values["show_progress"] = show_progress.lower() in ("1", "true", "yes")

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
