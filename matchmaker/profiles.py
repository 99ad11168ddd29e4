"""Profile writes and embedding status.

Profile writes enqueue an embedding job and return immediately; they never
wait on, or fail because of, the embedding itself.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from .config import settings
from .directory import MemberDirectory
from .domain import ProfileData
from .errors import NotFound
from .jobs import EmbeddingJobPayload, JobQueue, JobStatus
from .validation import validate_profile_changes, validate_profile_input
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

SEMANTIC_FIELDS = ("niche_interest", "project", "rabbit_hole")

_STATUS_BY_JOB = {
    JobStatus.WAITING: "pending",
    JobStatus.ACTIVE: "processing",
    JobStatus.COMPLETED: "completed",
    JobStatus.FAILED: "failed",
}


class ProfileService:

    def __init__(
        self,
        directory: MemberDirectory,
        vector_store: VectorStore,
        queue: JobQueue,
    ) -> None:
        self.directory = directory
        self.vector_store = vector_store
        self.queue = queue

    async def create_profile(self, user_id: str, data: dict[str, Any]) -> tuple[ProfileData, str]:
        """Create the user's profile and queue its embedding.

        Returns:
            The stored profile and its embedding status

        Raises:
            ValidationFailed: If the input is invalid
            NotFound: If the user does not exist
            Conflict: If the user already has a profile
        """
        fields = validate_profile_input(data).unwrap()
        profile = await self.directory.create_profile(
            ProfileData(
                user_id=user_id,
                niche_interest=fields.niche_interest,
                project=fields.project,
                rabbit_hole=fields.rabbit_hole,
                connection_type=fields.connection_type,
            )
        )
        logger.info(f"Created profile {profile.id} for user {user_id}")
        self._enqueue_embedding(profile)
        return profile, await self.get_embedding_status(user_id)

    async def update_profile(self, user_id: str, data: dict[str, Any]) -> tuple[ProfileData, str]:
        """Apply a partial update; re-embed only if semantic fields changed.

        A pending job for the same user is not deduplicated.
        """
        changes = validate_profile_changes(data).unwrap()
        current = await self.directory.get_profile_for_user(user_id)
        if current is None:
            raise NotFound("Profile not found")

        changed = [name for name, value in changes.items() if getattr(current, name) != value]
        updated = await self.directory.save_profile(replace(current, **changes))

        if any(name in SEMANTIC_FIELDS for name in changed):
            logger.info(f"Profile semantic fields updated for user {user_id}, triggering embedding regeneration")
            self._enqueue_embedding(updated)
        return updated, await self.get_embedding_status(user_id)

    async def get_profile(self, user_id: str) -> ProfileData:
        profile = await self.directory.get_profile_for_user(user_id)
        if profile is None:
            raise NotFound("Profile not found")
        return profile

    async def get_embedding_status(self, user_id: str) -> str:
        """One of pending / processing / completed / failed."""
        if await self.vector_store.has_embedding(user_id):
            return "completed"
        job = self.queue.latest_for_user(user_id)
        if job is None:
            return "pending"
        return _STATUS_BY_JOB[job.status]

    def _enqueue_embedding(self, profile: ProfileData) -> str:
        return self.queue.enqueue(
            EmbeddingJobPayload(user_id=profile.user_id, profile_id=profile.id),
            max_attempts=settings.queue.max_attempts,
            backoff_base=settings.queue.backoff_base,
        )
