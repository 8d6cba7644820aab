"""Sentence-transformers embedding generator.

The default model (paraphrase-multilingual-MiniLM-L12-v2) covers 50+
languages including CJK scripts and produces 384-dimensional vectors.
It is downloaded once into the configured cache directory.
"""

import logging

import numpy as np
import torch
from sentence_transformers import SentenceTransformer

from ..constants import DEFAULT_DIMENSIONS, DEFAULT_MODEL
from ..exceptions import DimensionMismatchError
from .generator import EmbeddingGenerator, check_dimensions

logger = logging.getLogger(__name__)


def detect_device() -> str:
    """Auto-detect best available device for embeddings."""
    if torch.cuda.is_available():
        return "cuda"
    elif torch.backends.mps.is_available():
        return "mps"
    return "cpu"


class SentenceTransformerGenerator(EmbeddingGenerator):
    """Wrapper for a sentence-transformers embedding model."""

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        dimensions: int = DEFAULT_DIMENSIONS,
        cache_dir: str | None = None,
        device: str | None = None,
        normalize: bool = True,
    ):
        """
        Initialize embedding generator.

        Args:
            model_name: HuggingFace model name or path
            dimensions: Expected embedding dimension; checked when the model loads
            cache_dir: Directory for downloaded model files (HF default if None)
            device: Device to use (cuda/mps/cpu). Auto-detected if None.
            normalize: Whether to L2-normalize embeddings
        """
        self.model_name = model_name
        self.dimensions = dimensions
        self.cache_dir = cache_dir
        self.device = device or detect_device()
        self.normalize = normalize

        # Lazy load model
        self._model: SentenceTransformer | None = None

    @property
    def model(self) -> SentenceTransformer:
        """Lazy load the model on first access."""
        if self._model is None:
            logger.info(f"Loading embedding model {self.model_name} on {self.device}...")
            model = SentenceTransformer(
                self.model_name,
                device=self.device,
                cache_folder=self.cache_dir,
            )
            actual = model.get_sentence_embedding_dimension()
            if actual is not None and actual != self.dimensions:
                raise DimensionMismatchError(self.dimensions, actual)
            self._model = model
            logger.info("Embedding model loaded")
        return self._model

    def load(self) -> None:
        _ = self.model

    def embed(self, text: str) -> np.ndarray:
        embedding = self.model.encode(
            [text],
            normalize_embeddings=self.normalize,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        return check_dimensions(embedding[0], self.dimensions)

