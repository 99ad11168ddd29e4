"""Embedding generation pipeline: profile text → stored user embedding.

Runs as the job handler of the embedding queue. Exceptions propagate so the
queue can count the attempt and retry.
"""
from __future__ import annotations

import logging

from ai.provider import EmbeddingProvider

from ..directory import MemberDirectory
from ..errors import NotFound
from ..jobs import EmbeddingJobPayload
from ..vector_store import VectorStore

logger = logging.getLogger(__name__)


def preprocess_profile_text(
    niche_interest: str,
    project: str,
    rabbit_hole: str | None = None,
) -> str:
    """Concatenate the semantic profile fields into one string to embed."""
    parts = [
        f"Interest: {niche_interest.strip()}",
        f"Project: {project.strip()}",
    ]
    if rabbit_hole and rabbit_hole.strip():
        parts.append(f"Exploring: {rabbit_hole.strip()}")
    return ". ".join(parts)


class EmbeddingWorker:
    """Job handler that embeds a profile and upserts the vector."""

    def __init__(
        self,
        directory: MemberDirectory,
        provider: EmbeddingProvider,
        vector_store: VectorStore,
    ) -> None:
        self.directory = directory
        self.provider = provider
        self.vector_store = vector_store

    async def __call__(self, payload: EmbeddingJobPayload) -> int:
        return await self.process(payload)

    async def process(self, payload: EmbeddingJobPayload) -> int:
        """Embed one profile.

        Returns:
            Number of dimensions stored

        Raises:
            NotFound: If the profile no longer exists
            Exception: Any provider or store failure, for the queue to retry
        """
        user_id, profile_id = payload.user_id, payload.profile_id
        logger.info(f"Processing embedding generation for user {user_id}, profile {profile_id}")

        profile = await self.directory.get_profile(profile_id)
        if profile is None:
            raise NotFound(f"Profile {profile_id} not found")

        text = preprocess_profile_text(profile.niche_interest, profile.project, profile.rabbit_hole)
        logger.debug(f"Profile text prepared: {text[:100]!r}")

        vector = await self.provider.embed(text)
        await self.vector_store.upsert(user_id, vector)

        logger.info(f"Stored embedding for user {user_id} ({len(vector)} dimensions)")
        return len(vector)
