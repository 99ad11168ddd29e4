"""Vector store adapters: one embedding per user plus cosine similarity queries.

The cosine math stays at this boundary so ranking never depends on which
adapter is in use (in-memory for tests and local runs, pgvector in production).
"""
from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Iterable

import numpy as np
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import models
from .config import settings
from .domain import utcnow
from .errors import InvalidVectorFormat

logger = logging.getLogger(__name__)


def parse_vector(raw: Any) -> list[float]:
    """Parse a stored vector into a list of finite floats.

    Accepts sequences, numpy arrays and the pgvector text form "[x,y,z]".

    Raises:
        InvalidVectorFormat: If the value cannot be parsed or has
            non-finite components.
    """
    if isinstance(raw, str):
        cleaned = raw.strip()
        if not (cleaned.startswith("[") and cleaned.endswith("]")):
            raise InvalidVectorFormat(f"Expected '[x,y,...]' vector text, got {raw[:40]!r}")
        body = cleaned[1:-1].strip()
        if not body:
            raise InvalidVectorFormat("Empty vector")
        try:
            values = [float(part) for part in body.split(",")]
        except ValueError as e:
            raise InvalidVectorFormat(f"Unparseable vector component: {e}") from e
    elif isinstance(raw, (list, tuple, np.ndarray)):
        try:
            values = [float(v) for v in raw]
        except (TypeError, ValueError) as e:
            raise InvalidVectorFormat(f"Unparseable vector component: {e}") from e
    else:
        raise InvalidVectorFormat(f"Invalid embedding format: {type(raw).__name__}")

    if not values:
        raise InvalidVectorFormat("Empty vector")
    for index, v in enumerate(values):
        if not math.isfinite(v):
            raise InvalidVectorFormat(
                f"Invalid vector component at index {index}: must be a finite number"
            )
    return values


def cosine_similarity(a: Iterable[float], b: Iterable[float]) -> float:
    """Cosine similarity, i.e. 1 - cosine distance.

    Zero-norm vectors have no direction and score 0.0.
    """
    va = np.asarray(list(a), dtype=np.float64)
    vb = np.asarray(list(b), dtype=np.float64)
    if va.shape != vb.shape:
        raise InvalidVectorFormat(
            f"Dimension mismatch: {va.shape[0]} vs {vb.shape[0]}"
        )
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class VectorStore(ABC):
    """Persists one embedding per user and answers similarity queries."""

    @abstractmethod
    async def upsert(self, user_id: str, vector: list[float]) -> None:
        """Insert or replace the user's embedding (last write wins)."""

    @abstractmethod
    async def get(self, user_id: str) -> list[float] | None:
        ...

    @abstractmethod
    async def has_embedding(self, user_id: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, user_id: str) -> None:
        ...

    @abstractmethod
    async def similarity(
        self,
        source_vector: list[float],
        candidate_ids: list[str],
    ) -> dict[str, float]:
        """Return candidate id -> cosine similarity for candidates with embeddings.

        The mapping carries no ordering guarantee.
        """


class InMemoryVectorStore(VectorStore):
    """Dict-backed store used by tests and single-process deployments."""

    def __init__(self) -> None:
        self._vectors: dict[str, list[float]] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, user_id: str, vector: list[float]) -> None:
        values = parse_vector(vector)
        async with self._lock:
            self._vectors[user_id] = values
        logger.debug(f"Stored embedding for user {user_id} ({len(values)} dimensions)")

    async def get(self, user_id: str) -> list[float] | None:
        vector = self._vectors.get(user_id)
        return list(vector) if vector is not None else None

    async def has_embedding(self, user_id: str) -> bool:
        return user_id in self._vectors

    async def delete(self, user_id: str) -> None:
        async with self._lock:
            self._vectors.pop(user_id, None)

    async def user_ids(self) -> set[str]:
        return set(self._vectors)

    async def similarity(
        self,
        source_vector: list[float],
        candidate_ids: list[str],
    ) -> dict[str, float]:
        source = parse_vector(source_vector)
        return {
            candidate_id: cosine_similarity(source, self._vectors[candidate_id])
            for candidate_id in candidate_ids
            if candidate_id in self._vectors
        }


class PgVectorStore(VectorStore):
    """pgvector-backed store over the `embeddings` table."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        model_name: str | None = None,
    ) -> None:
        self._session_maker = session_maker
        self._model_name = model_name or settings.embeddings.model_name

    async def upsert(self, user_id: str, vector: list[float]) -> None:
        values = parse_vector(vector)
        now = utcnow()
        stmt = pg_insert(models.Embedding).values(
            user_id=user_id,
            embedding=values,
            embedding_model=self._model_name,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[models.Embedding.user_id],
            set_={
                "embedding": stmt.excluded.embedding,
                "embedding_model": stmt.excluded.embedding_model,
                "updated_at": now,
            },
        )
        async with self._session_maker() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error(f"Failed to store embedding for user {user_id}: {e}")
                raise
        logger.info(f"Embedding stored for user {user_id}")

    async def get(self, user_id: str) -> list[float] | None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(models.Embedding.embedding).where(models.Embedding.user_id == user_id)
            )
            raw = result.scalar_one_or_none()
        return parse_vector(raw) if raw is not None else None

    async def has_embedding(self, user_id: str) -> bool:
        async with self._session_maker() as session:
            result = await session.execute(
                select(models.Embedding.user_id).where(models.Embedding.user_id == user_id)
            )
            return result.scalar_one_or_none() is not None

    async def delete(self, user_id: str) -> None:
        async with self._session_maker() as session:
            await session.execute(
                delete(models.Embedding).where(models.Embedding.user_id == user_id)
            )
            await session.commit()
        logger.info(f"Embedding deleted for user {user_id}")

    async def similarity(
        self,
        source_vector: list[float],
        candidate_ids: list[str],
    ) -> dict[str, float]:
        if not candidate_ids:
            return {}

        source = parse_vector(source_vector)
        # <=> is pgvector's cosine distance operator
        similarity = (1 - models.Embedding.embedding.cosine_distance(source)).label("similarity")
        query = select(models.Embedding.user_id, similarity).where(
            models.Embedding.user_id.in_(candidate_ids)
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            rows = result.fetchall()

        scores = {}
        for user_id, score in rows:
            # pgvector yields NaN for zero-norm vectors
            value = float(score) if score is not None else 0.0
            scores[user_id] = value if math.isfinite(value) else 0.0
        logger.debug(f"Scored {len(scores)} of {len(candidate_ids)} candidates")
        return scores
