"""Match lifecycle state machine.

    (none) --accept--> accepted_by_one --other accepts--> mutual
    (none) --pass----> passed
    accepted_by_one --other passes--> passed
    accepted_by_one --ttl elapses---> expired

Pure functions only; persistence and compare-and-set live in the orchestrator
and the match stores.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from .errors import Conflict


class MatchStatus(str, Enum):
    ACCEPTED_BY_ONE = "accepted_by_one"
    MUTUAL = "mutual"
    PASSED = "passed"
    EXPIRED = "expired"


class MatchAction(str, Enum):
    ACCEPT = "accept"
    PASS = "pass"


def initial_status(action: MatchAction) -> MatchStatus:
    """Status of the row created by the first action on a pair."""
    if action == MatchAction.ACCEPT:
        return MatchStatus.ACCEPTED_BY_ONE
    return MatchStatus.PASSED


def is_expired(status: MatchStatus, expires_at: datetime | None, now: datetime) -> bool:
    return (
        status == MatchStatus.ACCEPTED_BY_ONE
        and expires_at is not None
        and expires_at <= now
    )


def next_status(
    status: MatchStatus,
    *,
    initiator_id: str,
    actor_id: str,
    action: MatchAction,
    expired: bool = False,
) -> MatchStatus:
    """Status after `actor_id` performs `action` on an existing match.

    Returning the current status means the action is an idempotent repeat.
    An elapsed `accepted_by_one` returns EXPIRED so the caller can persist the
    expiry before rejecting the action.

    Raises:
        Conflict: If the action contradicts the current state.
    """
    if status == MatchStatus.ACCEPTED_BY_ONE:
        if expired:
            return MatchStatus.EXPIRED
        if actor_id == initiator_id:
            if action == MatchAction.ACCEPT:
                return status
            raise Conflict("Match was already accepted; it cannot be passed now")
        if action == MatchAction.ACCEPT:
            return MatchStatus.MUTUAL
        return MatchStatus.PASSED

    if status == MatchStatus.MUTUAL:
        if action == MatchAction.ACCEPT:
            return status
        raise Conflict("Match is already mutual")

    if status == MatchStatus.PASSED:
        if action == MatchAction.PASS:
            return status
        raise Conflict("Match was passed and is closed")

    raise Conflict("Match has expired")
