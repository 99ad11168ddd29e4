"""Similarity strategies: score candidates against the source embedding."""
from __future__ import annotations

from abc import ABC, abstractmethod

from ..vector_store import VectorStore


class SimilarityStrategy(ABC):

    @abstractmethod
    async def compute_similarity(
        self,
        source_vector: list[float],
        candidate_ids: list[str],
    ) -> dict[str, float]:
        """Unordered mapping of candidate id to similarity."""

    def get_name(self) -> str:
        return type(self).__name__


class VectorSimilarityStrategy(SimilarityStrategy):
    """Cosine similarity (1 - cosine distance) through the vector store."""

    def __init__(self, vector_store: VectorStore) -> None:
        self.vector_store = vector_store

    async def compute_similarity(
        self,
        source_vector: list[float],
        candidate_ids: list[str],
    ) -> dict[str, float]:
        if not candidate_ids:
            return {}
        return await self.vector_store.similarity(source_vector, candidate_ids)
