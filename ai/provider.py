"""Embedding provider interface consumed by the embedding worker."""
from __future__ import annotations

from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """External embedding model: text in, fixed-dimension vector out."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text. Any exception is treated as a retryable job failure."""
