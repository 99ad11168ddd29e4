"""Matching pipeline: source user → ranked, explained candidate matches.

Workflow:
1. Retrieve the candidate pool (active organization members with embeddings)
2. Apply eligibility filters (prior matches, blocks, tenant)
3. Score candidates by cosine similarity against the source embedding
4. Drop candidates below the minimum similarity
5. Rerank for diversity
6. Keep the top N
7. Generate explanations
"""
from __future__ import annotations

import asyncio
import logging
import time

from ..config import settings
from ..domain import (
    BatchFailure,
    BatchMatchResult,
    GenerateMatchesRequest,
    GenerateMatchesResponse,
    MatchCandidate,
    MatchingMetadata,
    RankingCandidate,
)
from ..errors import MatchingError, MatchmakerError, NoEmbedding
from ..strategies.filters import FilterStrategy
from ..strategies.ranking import RankingStrategy
from ..strategies.reasons import ReasonGenerator
from ..strategies.retrieval import CandidateRetriever
from ..strategies.similarity import SimilarityStrategy
from ..vector_store import VectorStore

logger = logging.getLogger(__name__)


class MatchingEngine:
    """Composes the matching strategies into one request-scoped pipeline.

    The pipeline only reads shared state, so any number of requests can run
    concurrently. It returns a complete ranked list or raises.
    """

    def __init__(
        self,
        *,
        vector_store: VectorStore,
        retriever: CandidateRetriever,
        filter_strategy: FilterStrategy,
        similarity_strategy: SimilarityStrategy,
        ranking_strategy: RankingStrategy,
        reason_generator: ReasonGenerator,
    ) -> None:
        self.vector_store = vector_store
        self.retriever = retriever
        self.filter_strategy = filter_strategy
        self.similarity_strategy = similarity_strategy
        self.ranking_strategy = ranking_strategy
        self.reason_generator = reason_generator

    async def generate_matches(self, request: GenerateMatchesRequest) -> GenerateMatchesResponse:
        """Execute the complete matching pipeline for one user.

        Args:
            request: Source user and optional limit / threshold / weight
                overrides (defaults from config)

        Returns:
            GenerateMatchesResponse with ranked matches and pipeline metadata

        Raises:
            NoEmbedding: If the source has no embedding yet
            PreconditionFailed: If the source has no profile
            NotFound: If the source or a candidate is unknown
            MatchingError: For any unexpected failure
        """
        start = time.perf_counter()
        user_id = request.user_id
        limit = request.limit or settings.matching.default_limit
        min_similarity = (
            request.min_similarity_score
            if request.min_similarity_score is not None
            else settings.matching.min_similarity
        )

        try:
            logger.info(f"Starting matching for user {user_id} (limit={limit}, min_similarity={min_similarity})")

            # Step 1: Candidate pool
            all_candidates = await self.retriever.get_candidate_pool(user_id)

            # Step 2: Eligibility filters
            filtered = await self.filter_strategy.filter(user_id, all_candidates)

            # Step 3: Similarity
            source_vector = await self.vector_store.get(user_id)
            if source_vector is None:
                raise NoEmbedding(user_id)
            scores = await self.similarity_strategy.compute_similarity(source_vector, filtered)

            # Step 4: Threshold, iterating `filtered` so later ties keep pool order
            above_threshold = [
                RankingCandidate(user_id=cid, similarity_score=scores[cid])
                for cid in filtered
                if cid in scores and scores[cid] >= min_similarity
            ]

            # Step 5: Diversity rerank
            ranked = await self.ranking_strategy.rerank(
                user_id,
                above_threshold,
                diversity_weight=request.diversity_weight,
            )

            # Step 6: Top N
            top = ranked[:limit]

            # Step 7: Reasons
            reasons = await asyncio.gather(
                *(self.reason_generator.generate(user_id, c.user_id) for c in top)
            )
            matches = [
                MatchCandidate(
                    candidate_id=c.user_id,
                    similarity_score=c.similarity_score,
                    diversity_score=c.diversity_score,
                    final_score=c.final_score if c.final_score is not None else c.similarity_score,
                    reasons=r,
                )
                for c, r in zip(top, reasons)
            ]

            elapsed_ms = int((time.perf_counter() - start) * 1000)
            logger.info(
                f"Matched user {user_id}: {len(all_candidates)} considered, "
                f"{len(all_candidates) - len(filtered)} filtered, returning {len(matches)}"
            )
            return GenerateMatchesResponse(
                user_id=user_id,
                matches=matches,
                metadata=MatchingMetadata(
                    total_candidates_considered=len(all_candidates),
                    total_filtered=len(all_candidates) - len(filtered),
                    processing_time_ms=elapsed_ms,
                ),
            )

        except MatchmakerError:
            raise
        except Exception as e:
            logger.error(f"Matching failed for user {user_id}: {e}", exc_info=True)
            raise MatchingError(f"Matching pipeline failed: {e}") from e

    async def generate_batch_matches(
        self,
        user_ids: list[str],
        *,
        batch_size: int = 100,
        parallelism: int = 5,
        limit: int | None = None,
    ) -> BatchMatchResult:
        """Generate matches for many users, collecting per-user failures.

        Args:
            user_ids: Users to process
            batch_size: Users per batch
            parallelism: Concurrent requests within a batch
            limit: Matches per user (default from config)

        Returns:
            BatchMatchResult with counts, failures and duration
        """
        start = time.perf_counter()
        result = BatchMatchResult()
        semaphore = asyncio.Semaphore(parallelism)

        async def run_one(uid: str) -> None:
            async with semaphore:
                try:
                    response = await self.generate_matches(GenerateMatchesRequest(user_id=uid, limit=limit))
                except MatchmakerError as e:
                    logger.warning(f"Batch matching failed for user {uid}: {e}")
                    result.failures.append(BatchFailure(user_id=uid, error=str(e)))
                    return
                result.total_users_processed += 1
                result.total_matches_generated += len(response.matches)

        for i in range(0, len(user_ids), batch_size):
            batch = user_ids[i:i + batch_size]
            await asyncio.gather(*(run_one(uid) for uid in batch))

        result.duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Batch matching done: {result.total_users_processed} users, "
            f"{result.total_matches_generated} matches, {len(result.failures)} failures"
        )
        return result

    async def health_check(self) -> dict:
        """Report which strategies are wired in."""
        return {
            "status": "healthy",
            "strategies": {
                "filter": self.filter_strategy.get_name(),
                "similarity": self.similarity_strategy.get_name(),
                "ranking": self.ranking_strategy.get_name(),
            },
        }
