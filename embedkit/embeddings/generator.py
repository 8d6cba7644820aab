"""Embedding generator interface and the mock provider.

A generator turns arbitrary Unicode text into a fixed-length float32 vector.
The real model-backed generator lives in local.py so that importing this
module never pulls in torch.
"""

import hashlib
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np

from ..config import EmbeddingProvider
from ..constants import DEFAULT_DIMENSIONS, DEFAULT_MODEL
from ..exceptions import DimensionMismatchError


def check_dimensions(embedding: np.ndarray | Sequence[float], expected: int) -> np.ndarray:
    """Coerce to a float32 vector and verify its length.

    Raises:
        DimensionMismatchError: If the vector does not have `expected` components
    """
    vector = np.asarray(embedding, dtype=np.float32).reshape(-1)
    if vector.shape[0] != expected:
        raise DimensionMismatchError(expected, vector.shape[0])
    return vector


class EmbeddingGenerator(ABC):
    """Produces fixed-length vectors for text."""

    dimensions: int

    def load(self) -> None:
        """Load model weights. Called once by the worker before it reports ready."""

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Return a float32 vector of shape (dimensions,)."""


class MockGenerator(EmbeddingGenerator):
    """Deterministic pseudo-random embeddings seeded from a hash of the text.

    Identical text always maps to the identical unit vector; different text
    maps to an unrelated one. Useful offline and in tests where downloading
    a model is not an option.
    """

    def __init__(self, dimensions: int = DEFAULT_DIMENSIONS, delay_ms: int = 0) -> None:
        if dimensions <= 0:
            raise ValueError(f"dimensions must be positive, got {dimensions}")
        self.dimensions = dimensions
        self.delay_ms = delay_ms

    def embed(self, text: str) -> np.ndarray:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000)

        digest = hashlib.sha256(text.encode("utf-8", errors="surrogatepass")).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], "little"))
        vector = rng.standard_normal(self.dimensions).astype(np.float32)

        # standard_normal never yields an all-zero draw in practice
        return vector / np.linalg.norm(vector)


def create_generator(
    provider: EmbeddingProvider | str,
    dimensions: int = DEFAULT_DIMENSIONS,
    model_name: str = DEFAULT_MODEL,
    cache_dir: str | None = None,
    mock_delay_ms: int = 0,
) -> EmbeddingGenerator:
    """Build the generator for a provider name.

    Raises:
        ValueError: If the provider is unknown
    """
    provider = EmbeddingProvider(provider)

    if provider is EmbeddingProvider.MOCK:
        return MockGenerator(dimensions=dimensions, delay_ms=mock_delay_ms)

    # Deferred: importing torch takes seconds
    from .local import SentenceTransformerGenerator

    return SentenceTransformerGenerator(
        model_name=model_name,
        dimensions=dimensions,
        cache_dir=cache_dir,
    )
