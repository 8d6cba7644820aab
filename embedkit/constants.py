"""Shared defaults for the embedding cache, worker and service."""

from pathlib import Path

# all-MiniLM style multilingual model, 384 dimensions, ~470MB download
DEFAULT_MODEL = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
DEFAULT_DIMENSIONS = 384

# Persistent cache
DEFAULT_TTL_MS = 7 * 24 * 60 * 60 * 1000  # 7 days
DEFAULT_MAX_SIZE = 10_000
DEFAULT_DB_FILENAME = "embeddings.db"
SQLITE_BUSY_TIMEOUT_SECONDS = 5.0

# Worker process
DEFAULT_REQUEST_TIMEOUT_MS = 30_000
DEFAULT_INIT_TIMEOUT_MS = 120_000  # first run downloads the model
SHUTDOWN_GRACE_SECONDS = 1.0
DEFAULT_MAX_RESTARTS = 2

DEFAULT_CACHE_DIR = Path("~/.cache/embedkit")
