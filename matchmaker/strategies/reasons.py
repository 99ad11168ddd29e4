"""Human-readable match explanations from profile token overlap."""
from __future__ import annotations

import re
from abc import ABC, abstractmethod

from ..directory import MemberDirectory
from ..domain import ProfileData

FALLBACK_REASON = "Similar interests and values"
MAX_REASONS = 3
MIN_TOPIC_LENGTH = 5

STOPWORDS = frozenset({
    "the", "and", "for", "with", "this", "that", "from", "have", "been",
    "about", "into", "through", "during", "before", "after", "above",
    "below", "between", "under", "again", "further", "then", "once",
})

_PUNCTUATION = re.compile(r"[^\w\s]")


def tokenize(text: str) -> list[str]:
    """Lowercase, turn punctuation into spaces, split, drop stopwords."""
    words = _PUNCTUATION.sub(" ", text.lower()).split()
    return [w for w in words if w not in STOPWORDS]


def extract_shared_topics(text1: str, text2: str, limit: int = 3) -> list[str]:
    """Meaningful words both texts mention, in order of first appearance in `text1`."""
    other = set(tokenize(text2))
    topics: list[str] = []
    for word in tokenize(text1):
        if len(word) >= MIN_TOPIC_LENGTH and word in other and word not in topics:
            topics.append(word)
            if len(topics) == limit:
                break
    return topics


def build_reasons(source: ProfileData | None, candidate: ProfileData | None) -> list[str]:
    """Up to three reasons; never empty."""
    if source is None or candidate is None:
        return [FALLBACK_REASON]

    reasons = []
    if source.connection_type == candidate.connection_type:
        reasons.append(f"Both seeking {source.connection_type.label}")

    shared = extract_shared_topics(
        f"{source.niche_interest} {source.project}",
        f"{candidate.niche_interest} {candidate.project}",
    )
    if shared:
        reasons.append(f"You both mentioned {shared[0]}")

    if source.rabbit_hole and candidate.rabbit_hole:
        rabbit_hole_topics = extract_shared_topics(source.rabbit_hole, candidate.rabbit_hole)
        if rabbit_hole_topics:
            reasons.append(f"Both exploring {rabbit_hole_topics[0]}")

    return reasons[:MAX_REASONS] or [FALLBACK_REASON]


class ReasonGenerator(ABC):

    @abstractmethod
    async def generate(self, source_user_id: str, candidate_user_id: str) -> list[str]:
        ...


class SharedTopicReasonGenerator(ReasonGenerator):
    """Explains a match by shared connection type and overlapping profile words."""

    def __init__(self, directory: MemberDirectory) -> None:
        self.directory = directory

    async def generate(self, source_user_id: str, candidate_user_id: str) -> list[str]:
        source = await self.directory.get_profile_for_user(source_user_id)
        candidate = await self.directory.get_profile_for_user(candidate_user_id)
        return build_reasons(source, candidate)
