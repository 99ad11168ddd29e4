"""Explicit request validation.

Each validator returns a `Validated` result instead of raising, so callers
decide how to surface the errors (the API maps them to 422).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .config import settings
from .domain import ConnectionType, GenerateMatchesRequest
from .errors import ValidationFailed

T = TypeVar("T")

MAX_TEXT_LENGTH = 2000


@dataclass
class Validated(Generic[T]):
    value: T | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def unwrap(self) -> T:
        """Return the value or raise ValidationFailed with every error."""
        if self.errors:
            raise ValidationFailed(self.errors)
        return self.value


@dataclass
class ProfileInput:
    niche_interest: str
    project: str
    connection_type: ConnectionType
    rabbit_hole: str | None = None


def _check_fraction(name: str, value: float | None, errors: list[str]) -> None:
    if value is not None and not 0.0 <= value <= 1.0:
        errors.append(f"{name} must be between 0 and 1")


def validate_generate_request(
    user_id: str,
    *,
    limit: int | None = None,
    min_similarity_score: float | None = None,
    diversity_weight: float | None = None,
) -> Validated[GenerateMatchesRequest]:
    errors: list[str] = []
    if not user_id:
        errors.append("user_id is required")
    if limit is not None and not 1 <= limit <= settings.matching.max_limit:
        errors.append(f"limit must be between 1 and {settings.matching.max_limit}")
    _check_fraction("min_similarity_score", min_similarity_score, errors)
    _check_fraction("diversity_weight", diversity_weight, errors)

    if errors:
        return Validated(errors=errors)
    return Validated(
        value=GenerateMatchesRequest(
            user_id=user_id,
            limit=limit,
            min_similarity_score=min_similarity_score,
            diversity_weight=diversity_weight,
        )
    )


def _clean_text(name: str, value: Any, errors: list[str], *, required: bool) -> str | None:
    if value is None:
        if required:
            errors.append(f"{name} is required")
        return None
    if not isinstance(value, str):
        errors.append(f"{name} must be a string")
        return None
    text = value.strip()
    if required and not text:
        errors.append(f"{name} must not be blank")
    if len(text) > MAX_TEXT_LENGTH:
        errors.append(f"{name} must be at most {MAX_TEXT_LENGTH} characters")
    return text or None


def _parse_connection_type(value: Any, errors: list[str]) -> ConnectionType | None:
    try:
        return ConnectionType(value)
    except ValueError:
        allowed = ", ".join(c.value for c in ConnectionType)
        errors.append(f"connection_type must be one of: {allowed}")
        return None


def validate_profile_input(data: dict[str, Any]) -> Validated[ProfileInput]:
    """Validate a full profile submission."""
    errors: list[str] = []
    niche_interest = _clean_text("niche_interest", data.get("niche_interest"), errors, required=True)
    project = _clean_text("project", data.get("project"), errors, required=True)
    rabbit_hole = _clean_text("rabbit_hole", data.get("rabbit_hole"), errors, required=False)
    connection_type = _parse_connection_type(data.get("connection_type"), errors)

    if errors:
        return Validated(errors=errors)
    return Validated(
        value=ProfileInput(
            niche_interest=niche_interest,
            project=project,
            connection_type=connection_type,
            rabbit_hole=rabbit_hole,
        )
    )


def validate_profile_changes(data: dict[str, Any]) -> Validated[dict[str, Any]]:
    """Validate a partial update; only keys present in `data` are checked.

    An explicit `rabbit_hole: None` clears the field.
    """
    errors: list[str] = []
    changes: dict[str, Any] = {}
    for name in ("niche_interest", "project"):
        if name in data:
            changes[name] = _clean_text(name, data[name], errors, required=True)
    if "rabbit_hole" in data:
        changes["rabbit_hole"] = _clean_text("rabbit_hole", data["rabbit_hole"], errors, required=False)
    if "connection_type" in data:
        changes["connection_type"] = _parse_connection_type(data["connection_type"], errors)

    if errors:
        return Validated(errors=errors)
    return Validated(value=changes)
