"""Plain domain records passed between stores, strategies and the orchestrator.

The SQL adapters map ORM rows into these; the in-memory adapters store them
directly.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the models store datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    """Order a pair of user ids so either side produces the same key."""
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


class ConnectionType(str, Enum):
    """What kind of connection a member is looking for."""
    COLLABORATION = "collaboration"
    MENTORSHIP = "mentorship"
    FRIENDSHIP = "friendship"
    KNOWLEDGE_EXCHANGE = "knowledge_exchange"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class UserStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


@dataclass
class ProfileData:
    """Free-text onboarding answers plus the connection preference."""
    user_id: str
    niche_interest: str
    project: str
    connection_type: ConnectionType
    rabbit_hole: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Member:
    """A user together with the organization metadata ranking needs."""
    user_id: str
    name: str
    email: str
    org_id: str
    org_domain: str
    status: UserStatus = UserStatus.ACTIVE
    profile: ProfileData | None = None

    @property
    def contact(self) -> Contact:
        return Contact(user_id=self.user_id, name=self.name, email=self.email)


@dataclass(frozen=True)
class Contact:
    user_id: str
    name: str
    email: str


@dataclass
class RankingCandidate:
    """Candidate flowing through the threshold and ranking stages."""
    user_id: str
    similarity_score: float
    diversity_score: float = 0.0
    final_score: float | None = None


@dataclass
class MatchCandidate:
    """Ranked candidate as surfaced to the user, and the input of accept/pass."""
    candidate_id: str
    similarity_score: float
    diversity_score: float = 0.0
    final_score: float = 0.0
    reasons: list[str] = field(default_factory=list)


@dataclass
class GenerateMatchesRequest:
    user_id: str
    limit: int | None = None
    min_similarity_score: float | None = None
    diversity_weight: float | None = None


@dataclass
class MatchingMetadata:
    total_candidates_considered: int
    total_filtered: int
    processing_time_ms: int


@dataclass
class GenerateMatchesResponse:
    user_id: str
    matches: list[MatchCandidate]
    metadata: MatchingMetadata


@dataclass
class BatchFailure:
    user_id: str
    error: str


@dataclass
class BatchMatchResult:
    total_users_processed: int = 0
    total_matches_generated: int = 0
    failures: list[BatchFailure] = field(default_factory=list)
    duration_ms: int = 0


@dataclass
class MatchRecord:
    """Persisted match between a canonical pair of users."""
    user_a_id: str
    user_b_id: str
    initiator_id: str
    status: str
    similarity_score: float = 0.0
    diversity_score: float = 0.0
    final_score: float = 0.0
    reasons: list[str] = field(default_factory=list)
    shared_interest: str | None = None
    context: str | None = None
    expires_at: datetime | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def other_user(self, user_id: str) -> str:
        return self.user_b_id if user_id == self.user_a_id else self.user_a_id


@dataclass
class IntroRecord:
    match_id: str
    user_a_status: str = "accepted"
    user_b_status: str = "accepted"
    status: str = "mutual"
    intro_sent_at: datetime | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ActionResult:
    """Outcome of an accept or pass."""
    status: str
    match_id: str
    intro_id: str | None = None


@dataclass
class IntroView:
    """An intro as seen by one of its two members."""
    id: str
    match_id: str
    other_party: Contact
    shared_interest: str
    interests: list[str]
    status: str
    created_at: datetime
