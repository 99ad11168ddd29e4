"""Embedding provider for profile text.

Wraps sentence-transformers with batching and error handling. Retries are
owned by the embedding job queue, not by this module.
"""
from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Iterable

from sentence_transformers import SentenceTransformer

from matchmaker.config import settings

from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when embedding computation fails."""
    pass


@lru_cache(maxsize=1)
def _load_model() -> SentenceTransformer:
    """Load and cache the sentence transformer model.

    Returns:
        Initialized SentenceTransformer model

    Raises:
        EmbeddingError: If model loading fails
    """
    try:
        logger.info(
            f"Loading embedding model: {settings.embeddings.model_name} "
            f"on device: {settings.embeddings.device}"
        )
        model = SentenceTransformer(
            settings.embeddings.model_name,
            device=settings.embeddings.device,
        )
        logger.info(f"Model loaded successfully. Embedding dim: {settings.embeddings.dim}")
        return model
    except Exception as e:
        logger.error(f"Failed to load embedding model: {e}")
        raise EmbeddingError(f"Model loading failed: {e}") from e


def embed_texts(texts: list[str] | Iterable[str]) -> list[list[float]]:
    """Compute embeddings for a batch of texts.

    Args:
        texts: List or iterable of text strings to embed

    Returns:
        List of embedding vectors (each is a list of floats)

    Raises:
        EmbeddingError: If embedding computation fails
        ValueError: If texts contains non-string or blank items
    """
    text_list = list(texts)
    if not text_list:
        logger.warning("Empty text list provided to embed_texts")
        return []

    if not all(isinstance(t, str) for t in text_list):
        raise ValueError("All items in texts must be strings")
    if not all(t.strip() for t in text_list):
        raise ValueError("Cannot embed blank text")

    try:
        model = _load_model()
        logger.debug(f"Encoding {len(text_list)} texts")

        embeddings = model.encode(
            text_list,
            batch_size=settings.embeddings.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=settings.embeddings.normalize_embeddings,
        )

        result = embeddings.tolist()
        logger.debug(f"Successfully encoded {len(result)} embeddings")
        return result

    except EmbeddingError:
        raise
    except Exception as e:
        logger.error(f"Embedding computation failed: {e}")
        raise EmbeddingError(f"Failed to compute embeddings: {e}") from e


def embed_single(text: str) -> list[float]:
    """Convenience function to embed a single text."""
    return embed_texts([text])[0]


class SentenceTransformerProvider(EmbeddingProvider):
    """Runs the blocking encode call in a worker thread."""

    async def embed(self, text: str) -> list[float]:
        vector = await asyncio.to_thread(embed_single, text)
        if len(vector) != settings.embeddings.dim:
            raise EmbeddingError(
                f"Model returned {len(vector)} dimensions, expected {settings.embeddings.dim}"
            )
        return vector
