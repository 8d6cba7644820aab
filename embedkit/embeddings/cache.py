"""Persistent embedding cache backed by SQLite.

Embeddings are keyed by a content hash of the exact input text, so any
process opening the same database file sees the same entries. Entries
expire after a TTL and the table is kept within max_size by evicting the
least recently accessed rows.

Hit/miss counters are per-instance; everything else lives in the database
and relies on SQLite transactions for cross-process safety.
"""

import contextlib
import hashlib
import logging
import sqlite3
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from ..config import CacheConfig
from ..constants import SQLITE_BUSY_TIMEOUT_SECONDS
from ..exceptions import StorageError

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"

# 32 hex chars = 128 bits of SHA-256
HASH_LENGTH = 32

SCHEMA = """
CREATE TABLE IF NOT EXISTS embedding_cache (
    hash TEXT PRIMARY KEY,
    embedding BLOB NOT NULL,
    dim INTEGER NOT NULL,
    created_at REAL NOT NULL,
    last_accessed_at REAL NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_embedding_cache_created
    ON embedding_cache(created_at);
CREATE INDEX IF NOT EXISTS idx_embedding_cache_accessed
    ON embedding_cache(last_accessed_at, created_at);
"""


def hash_content(text: str) -> str:
    """Stable content-addressed key for text. No whitespace or case folding."""
    digest = hashlib.sha256(text.encode("utf-8", errors="surrogatepass")).hexdigest()
    return digest[:HASH_LENGTH]


def _now_ms() -> float:
    return time.time() * 1000


def _to_blob(embedding: np.ndarray | Sequence[float]) -> bytes:
    return np.asarray(embedding, dtype=np.float32).reshape(-1).tobytes()


def _from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).copy()


@dataclass
class CachedEmbedding:
    """A live cache row as returned by get_all_embeddings()."""

    hash: str
    embedding: np.ndarray


@dataclass
class CacheStats:
    """Cache statistics. Counters are local to one EmbeddingCache instance."""

    size: int
    hits: int
    misses: int
    hit_rate: float
    bytes_used: int
    oldest_entry_age_ms: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "bytes_used": self.bytes_used,
            "oldest_entry_age_ms": self.oldest_entry_age_ms,
        }


class EmbeddingCache:
    """Durable hash(text) -> vector store with TTL expiry and LRU capacity."""

    def __init__(self, db_path: Path | str = MEMORY_DB, config: CacheConfig | None = None) -> None:
        """
        Open (or create) the cache database.

        Args:
            db_path: SQLite file path, or ":memory:" for a private in-memory cache
            config: TTL, capacity and dimension settings

        Raises:
            StorageError: If the database cannot be opened or initialized
        """
        self.config = config or CacheConfig()
        self.db_path = db_path if db_path == MEMORY_DB else Path(db_path).expanduser()
        self.hits = 0
        self.misses = 0

        with self._storage_errors("open"):
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None: transactions are issued explicitly below
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=SQLITE_BUSY_TIMEOUT_SECONDS,
                isolation_level=None,
            )
            if self.db_path != MEMORY_DB:
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(SCHEMA)

        logger.debug(f"Embedding cache opened at {self.db_path}")

    @property
    def ttl_ms(self) -> int:
        return self.config.ttl_ms

    @property
    def max_size(self) -> int:
        return self.config.max_size

    @contextlib.contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        """Re-raise sqlite3 failures as StorageError."""
        try:
            yield
        except sqlite3.Error as e:
            raise StorageError(f"Embedding cache {operation} failed: {e}") from e

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction. Takes the database write lock up front."""
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self._conn
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")

    def _expiry_cutoff(self, now: float) -> float:
        """Rows created at or before this instant are expired."""
        return now - self.ttl_ms

    def get(self, text: str) -> np.ndarray | None:
        """
        Look up the embedding for text.

        Expired rows count as misses even if they are still stored. Only a
        hit writes, to refresh the access time.

        Returns:
            The cached vector, or None on a miss
        """
        key = hash_content(text)
        now = _now_ms()

        with self._storage_errors("get"):
            row = self._conn.execute(
                "SELECT embedding FROM embedding_cache WHERE hash = ? AND created_at > ?",
                (key, self._expiry_cutoff(now)),
            ).fetchone()
            if row is not None:
                # Single statement, so autocommit is atomic
                self._conn.execute(
                    """
                    UPDATE embedding_cache
                    SET access_count = access_count + 1, last_accessed_at = ?
                    WHERE hash = ?
                    """,
                    (now, key),
                )

        if row is None:
            self.misses += 1
            return None

        self.hits += 1
        return _from_blob(row[0])

    def set(self, text: str, embedding: np.ndarray | Sequence[float]) -> None:
        """
        Store (or overwrite) the embedding for text.

        An empty embedding is stored as a zero-length vector. Capacity
        eviction runs in the same transaction, so the cache is never
        observed above max_size.
        """
        key = hash_content(text)
        blob = _to_blob(embedding)
        dim = len(blob) // 4
        now = _now_ms()

        with self._storage_errors("set"), self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO embedding_cache
                    (hash, embedding, dim, created_at, last_accessed_at, access_count)
                VALUES (?, ?, ?, ?, ?, 1)
                ON CONFLICT(hash) DO UPDATE SET
                    embedding = excluded.embedding,
                    dim = excluded.dim,
                    created_at = excluded.created_at,
                    last_accessed_at = excluded.last_accessed_at,
                    access_count = 1
                """,
                (key, blob, dim, now, now),
            )
            self._evict_over_capacity(conn, now)

    def _evict_over_capacity(self, conn: sqlite3.Connection, now: float) -> None:
        cutoff = self._expiry_cutoff(now)
        (live,) = conn.execute("SELECT COUNT(*) FROM embedding_cache WHERE created_at > ?", (cutoff,)).fetchone()
        excess = live - self.max_size
        if excess <= 0:
            return

        # Expired rows are already logically gone; sweep them with the LRU tail
        conn.execute("DELETE FROM embedding_cache WHERE created_at <= ?", (cutoff,))
        conn.execute(
            """
            DELETE FROM embedding_cache
            WHERE hash IN (
                SELECT hash FROM embedding_cache
                ORDER BY last_accessed_at ASC, created_at ASC, rowid ASC
                LIMIT ?
            )
            """,
            (excess,),
        )
        logger.debug(f"Evicted {excess} least recently used embeddings (max_size={self.max_size})")

    def has(self, text: str) -> bool:
        """True if a live entry exists. Does not touch counters or access time."""
        with self._storage_errors("has"):
            row = self._conn.execute(
                "SELECT 1 FROM embedding_cache WHERE hash = ? AND created_at > ?",
                (hash_content(text), self._expiry_cutoff(_now_ms())),
            ).fetchone()
        return row is not None

    def evict_expired(self) -> int:
        """Delete all expired rows. Returns the number removed."""
        with self._storage_errors("evict_expired"), self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM embedding_cache WHERE created_at <= ?",
                (self._expiry_cutoff(_now_ms()),),
            )
            removed = cursor.rowcount

        if removed:
            logger.info(f"Evicted {removed} expired embeddings")
        return removed

    def clear(self) -> None:
        """Remove every entry and reset hit/miss counters."""
        with self._storage_errors("clear"), self._transaction() as conn:
            conn.execute("DELETE FROM embedding_cache")
        self.hits = 0
        self.misses = 0

    def get_stats(self) -> CacheStats:
        """Snapshot of live size, bytes and this instance's hit/miss counters."""
        now = _now_ms()
        with self._storage_errors("get_stats"):
            size, bytes_used, oldest = self._conn.execute(
                """
                SELECT COUNT(*), COALESCE(SUM(LENGTH(embedding)), 0), MIN(created_at)
                FROM embedding_cache
                WHERE created_at > ?
                """,
                (self._expiry_cutoff(now),),
            ).fetchone()

        total = self.hits + self.misses
        return CacheStats(
            size=size,
            hits=self.hits,
            misses=self.misses,
            hit_rate=self.hits / total if total > 0 else 0.0,
            bytes_used=bytes_used,
            oldest_entry_age_ms=now - oldest if oldest is not None else 0.0,
        )

    def get_all_embeddings(self) -> list[CachedEmbedding]:
        """All live entries, for bulk export or building a similarity index."""
        with self._storage_errors("get_all_embeddings"):
            rows = self._conn.execute(
                "SELECT hash, embedding FROM embedding_cache WHERE created_at > ? ORDER BY rowid",
                (self._expiry_cutoff(_now_ms()),),
            ).fetchall()
        return [CachedEmbedding(hash=h, embedding=_from_blob(blob)) for h, blob in rows]

    def close(self) -> None:
        with self._storage_errors("close"):
            self._conn.close()

    def __enter__(self) -> "EmbeddingCache":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
