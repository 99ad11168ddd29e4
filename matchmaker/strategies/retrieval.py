"""Candidate retrieval: who is eligible to be scored at all."""
from __future__ import annotations

import logging

from ..config import settings
from ..directory import MemberDirectory
from ..errors import NoEmbedding
from ..vector_store import VectorStore

logger = logging.getLogger(__name__)


class CandidateRetriever:
    """Lists active members of the source's organization with embeddings.

    The source itself is excluded.

    Args:
        directory: Member lookups
        vector_store: Used for the source-embedding precondition
        limit: Cap on the pool size (default from config)
    """

    def __init__(
        self,
        directory: MemberDirectory,
        vector_store: VectorStore,
        *,
        limit: int | None = None,
    ) -> None:
        self.directory = directory
        self.vector_store = vector_store
        self.limit = limit or settings.matching.candidate_pool_limit

    async def get_candidate_pool(self, source_user_id: str) -> list[str]:
        """Return candidate ids for `source_user_id`.

        Raises:
            NoEmbedding: If the source has not finished onboarding.
        """
        if not await self.vector_store.has_embedding(source_user_id):
            raise NoEmbedding(source_user_id)

        candidates = await self.directory.list_candidate_ids(source_user_id, self.limit)
        pool = [c for c in candidates if c != source_user_id]
        logger.info(f"Candidate pool for user {source_user_id}: {len(pool)} (cap={self.limit})")
        return pool
