"""Diversity-aware reranking.

Diversity bonuses (capped at 1.0):
- different organization: +0.4
- different connection type preference: +0.3
- different organization domain: +0.3 (catches same-brand, different-domain tenants)

Final score = similarity * (1 - w) + diversity * w, default w = 0.3
(70% similarity, 30% diversity).
"""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod

from ..directory import MemberDirectory
from ..domain import Member, RankingCandidate
from ..errors import NotFound, PreconditionFailed

logger = logging.getLogger(__name__)

DEFAULT_DIVERSITY_WEIGHT = 0.3

ORG_DIVERSITY_BONUS = 0.4
CONNECTION_TYPE_DIVERSITY_BONUS = 0.3
DOMAIN_DIVERSITY_BONUS = 0.3


def compute_diversity_score(source: Member, candidate: Member) -> float:
    """How different `candidate` is from `source`, in [0, 1]."""
    if source.profile is None or candidate.profile is None:
        raise PreconditionFailed("Diversity needs both profiles")

    bonuses = []
    if candidate.org_id != source.org_id:
        bonuses.append(ORG_DIVERSITY_BONUS)
    if candidate.profile.connection_type != source.profile.connection_type:
        bonuses.append(CONNECTION_TYPE_DIVERSITY_BONUS)
    if candidate.org_domain != source.org_domain:
        bonuses.append(DOMAIN_DIVERSITY_BONUS)
    return min(math.fsum(bonuses), 1.0)


def blend_scores(similarity: float, diversity: float, weight: float) -> float:
    return similarity * (1 - weight) + diversity * weight


class RankingStrategy(ABC):

    @abstractmethod
    async def rerank(
        self,
        source_user_id: str,
        candidates: list[RankingCandidate],
        *,
        diversity_weight: float | None = None,
    ) -> list[RankingCandidate]:
        """Score and order candidates, best first."""

    def get_name(self) -> str:
        return type(self).__name__


class DiversityRankingStrategy(RankingStrategy):
    """Blends similarity with organizational and preference diversity.

    Ties on final score go to the higher similarity, then keep input order.
    """

    def __init__(
        self,
        directory: MemberDirectory,
        *,
        diversity_weight: float = DEFAULT_DIVERSITY_WEIGHT,
    ) -> None:
        if not 0.0 <= diversity_weight <= 1.0:
            raise ValueError("diversity_weight must be within [0, 1]")
        self.directory = directory
        self.diversity_weight = diversity_weight

    async def rerank(
        self,
        source_user_id: str,
        candidates: list[RankingCandidate],
        *,
        diversity_weight: float | None = None,
    ) -> list[RankingCandidate]:
        source = await self.directory.get_member(source_user_id)
        if source is None or source.profile is None:
            raise PreconditionFailed(
                f"Source user {source_user_id} not found or has no profile"
            )

        if not candidates:
            return []

        weight = self.diversity_weight if diversity_weight is None else diversity_weight
        members = await self.directory.get_members([c.user_id for c in candidates])

        ranked = []
        for candidate in candidates:
            member = members.get(candidate.user_id)
            if member is None or member.profile is None:
                raise NotFound(f"Candidate {candidate.user_id} not found or has no profile")

            diversity = compute_diversity_score(source, member)
            ranked.append(
                RankingCandidate(
                    user_id=candidate.user_id,
                    similarity_score=candidate.similarity_score,
                    diversity_score=diversity,
                    final_score=blend_scores(candidate.similarity_score, diversity, weight),
                )
            )

        # sort is stable, so equal keys keep input order
        ranked.sort(key=lambda c: (c.final_score, c.similarity_score), reverse=True)
        logger.debug(f"Reranked {len(ranked)} candidates for {source_user_id} (w={weight})")
        return ranked
