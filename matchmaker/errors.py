"""Error taxonomy shared by the matching pipeline, the embedding queue and the API."""
from __future__ import annotations


class MatchmakerError(Exception):
    """Base class for all domain errors."""

    code = "matchmaker_error"


class NoEmbedding(MatchmakerError):
    """Raised when the source user has no stored embedding yet.

    Signals incomplete onboarding, which is distinct from "no candidates".
    """

    code = "no_embedding"

    def __init__(self, user_id: str):
        super().__init__(
            f"No embedding found for user {user_id}. User must complete onboarding first."
        )
        self.user_id = user_id


class PreconditionFailed(MatchmakerError):
    """Raised when ranking is invoked for a user without a completed profile."""

    code = "precondition_failed"


class NotFound(MatchmakerError):
    """Raised for an unknown match, intro, profile or user."""

    code = "not_found"


class InvalidVectorFormat(MatchmakerError):
    """Raised when a stored vector cannot be parsed into finite floats."""

    code = "invalid_vector_format"


class JobExhausted(MatchmakerError):
    """Recorded on an embedding job that failed after its last attempt.

    Never raised to callers; observable through job status polling only.
    """

    code = "job_exhausted"


class Conflict(MatchmakerError):
    """Raised for duplicate creation attempts or contradicting match actions."""

    code = "conflict"


class ValidationFailed(MatchmakerError):
    """Raised when explicit request validation rejects the input."""

    code = "validation_failed"

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class MatchingError(MatchmakerError):
    """Raised when the matching pipeline fails unexpectedly."""

    code = "matching_error"
