"""Match actions and introductions (double opt-in).

Accept and pass are the only writes on the match path. The first action on a
pair inserts the row; the unique pair key makes a racing second insert fail,
and the loser replays its action as a compare-and-set transition. An intro is
created once per match, and only the call that inserted it notifies.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from .config import settings
from .directory import MemberDirectory
from .domain import (
    ActionResult,
    IntroRecord,
    IntroView,
    MatchCandidate,
    MatchRecord,
    canonical_pair,
    utcnow,
)
from .errors import Conflict, MatchmakerError, NotFound, ValidationFailed
from .match_store import MatchStore
from .notifications import Notifier
from .state_machine import MatchAction, MatchStatus, initial_status, is_expired, next_status

logger = logging.getLogger(__name__)

ACTIVE_INTRO_STATUSES = ("mutual", "active")
DEFAULT_SHARED_INTEREST = "shared interests"
MAX_TRANSITION_ATTEMPTS = 5


class IntroductionService:
    """Persists accept/pass as match state transitions and creates intros.

    Args:
        match_store: Match/intro persistence
        directory: Member lookups for validation and contact details
        notifier: Receives one notification per party on a new intro
        match_ttl: How long an unreciprocated accept stays open (default from
            config; with MATCHING_MATCH_TTL_DAYS unset, accepts never expire)
    """

    def __init__(
        self,
        match_store: MatchStore,
        directory: MemberDirectory,
        notifier: Notifier,
        *,
        match_ttl: timedelta | None = None,
    ) -> None:
        self.match_store = match_store
        self.directory = directory
        self.notifier = notifier
        if match_ttl is None and settings.matching.match_ttl_days:
            match_ttl = timedelta(days=settings.matching.match_ttl_days)
        self.match_ttl = match_ttl

    async def accept(self, user_id: str, candidate: MatchCandidate) -> ActionResult:
        """Accept a candidate; becomes mutual if the other side accepted first.

        Raises:
            ValidationFailed: If a user acts on themselves
            NotFound: If either user is unknown
            Conflict: If the match is closed (passed or expired)
        """
        match = await self._apply(user_id, candidate, MatchAction.ACCEPT)
        if match.status == MatchStatus.MUTUAL.value:
            intro = await self.create_introduction(match.id)
            return ActionResult(status="mutual", match_id=match.id, intro_id=intro.id)
        return ActionResult(status="accepted", match_id=match.id)

    async def pass_match(self, user_id: str, candidate: MatchCandidate) -> ActionResult:
        """Decline a candidate; the pair is never offered again."""
        match = await self._apply(user_id, candidate, MatchAction.PASS)
        return ActionResult(status="passed", match_id=match.id)

    async def _apply(self, user_id: str, candidate: MatchCandidate, action: MatchAction) -> MatchRecord:
        other_id = candidate.candidate_id
        if user_id == other_id:
            raise ValidationFailed(["Cannot act on a match with yourself"])
        members = await self.directory.get_members([user_id, other_id])
        for uid in (user_id, other_id):
            if uid not in members:
                raise NotFound(f"User {uid} not found")

        now = utcnow()
        user_a, user_b = canonical_pair(user_id, other_id)
        status = initial_status(action)
        match, created = await self.match_store.insert_if_absent(
            MatchRecord(
                user_a_id=user_a,
                user_b_id=user_b,
                initiator_id=user_id,
                status=status.value,
                similarity_score=candidate.similarity_score,
                diversity_score=candidate.diversity_score,
                final_score=candidate.final_score,
                reasons=list(candidate.reasons),
                shared_interest=candidate.reasons[0] if candidate.reasons else None,
                context=". ".join(candidate.reasons) or None,
                expires_at=now + self.match_ttl if status == MatchStatus.ACCEPTED_BY_ONE and self.match_ttl else None,
                created_at=now,
                updated_at=now,
            )
        )
        if created:
            logger.info(f"User {user_id} {action.value}ed {other_id}: match {match.id} is {match.status}")
            return match
        return await self._transition(match, user_id, action)

    async def _transition(self, match: MatchRecord, user_id: str, action: MatchAction) -> MatchRecord:
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            now = utcnow()
            current = MatchStatus(match.status)
            target = next_status(
                current,
                initiator_id=match.initiator_id,
                actor_id=user_id,
                action=action,
                expired=is_expired(current, match.expires_at, now),
            )
            if target == current:
                return match

            if await self.match_store.compare_and_set(match.id, current, target, now):
                logger.info(f"Match {match.id}: {current.value} -> {target.value} by user {user_id}")
                if target == MatchStatus.EXPIRED:
                    raise Conflict("Match has expired")
                match.status = target.value
                match.updated_at = now
                return match

            # lost a race; re-read and decide again
            reloaded = await self.match_store.get(match.id)
            if reloaded is None:
                raise NotFound(f"Match {match.id} not found")
            match = reloaded

        raise Conflict(f"Match {match.id} is changing too quickly; retry the action")

    async def create_introduction(self, match_id: str) -> IntroRecord:
        """Create the intro for a mutual match, or return the existing one.

        Notifications go out only from the call that inserted the intro.

        Raises:
            NotFound: If the match is unknown
            Conflict: If the match is not mutual
        """
        match = await self.match_store.get(match_id)
        if match is None:
            raise NotFound("Match not found")

        existing = await self.match_store.get_intro_by_match(match_id)
        if existing is not None:
            return existing

        if match.status != MatchStatus.MUTUAL.value:
            raise Conflict(f"Match {match_id} is {match.status}, not mutual")

        intro, created = await self.match_store.insert_intro_if_absent(
            IntroRecord(match_id=match_id, intro_sent_at=utcnow())
        )
        if not created:
            return intro

        logger.info(f"Created intro {intro.id} for match {match_id}")
        await self._send_mutual_introduction(match)
        return intro

    async def _send_mutual_introduction(self, match: MatchRecord) -> None:
        members = await self.directory.get_members([match.user_a_id, match.user_b_id])
        user_a = members.get(match.user_a_id)
        user_b = members.get(match.user_b_id)
        if user_a is None or user_b is None:
            # the intro already exists; same handling as a delivery failure
            logger.error(f"Cannot notify about match {match.id}: a member no longer exists")
            return

        shared_interest = match.shared_interest or DEFAULT_SHARED_INTEREST
        context = match.context or ""
        for recipient, other in ((user_a, user_b), (user_b, user_a)):
            try:
                await self.notifier.notify_mutual_intro(
                    recipient.contact, other.contact, shared_interest, context
                )
            except MatchmakerError:
                raise
            except Exception as e:
                # the intro already exists; a delivery failure must not undo it
                logger.error(f"Failed to notify {recipient.user_id} about match {match.id}: {e}", exc_info=True)

    async def get_active_intros(self, user_id: str) -> list[IntroView]:
        rows = await self.match_store.list_intros_for_user(user_id, ACTIVE_INTRO_STATUSES)
        others = await self.directory.get_members([m.other_user(user_id) for _, m in rows])

        views = []
        for intro, match in rows:
            other = others.get(match.other_user(user_id))
            if other is None:
                continue
            views.append(
                IntroView(
                    id=intro.id,
                    match_id=match.id,
                    other_party=other.contact,
                    shared_interest=match.shared_interest or DEFAULT_SHARED_INTEREST,
                    interests=match.context.split(". ") if match.context else [],
                    status=intro.status,
                    created_at=intro.created_at,
                )
            )
        return views

    async def complete_introduction(self, intro_id: str, user_id: str) -> None:
        """Mark an intro completed on behalf of one of its two members.

        Raises:
            NotFound: If the intro is unknown or `user_id` is not part of it
        """
        intro = await self.match_store.get_intro(intro_id)
        match = await self.match_store.get(intro.match_id) if intro is not None else None
        if match is None or user_id not in (match.user_a_id, match.user_b_id):
            raise NotFound("Intro not found")
        if not await self.match_store.set_intro_status(intro_id, "completed"):
            raise NotFound("Intro not found")
        logger.info(f"Intro {intro_id} marked completed by user {user_id}")

    async def expire_stale_matches(self, now: datetime | None = None) -> int:
        """Expire unreciprocated accepts past their TTL; returns how many changed."""
        now = now or utcnow()
        expired = 0
        for match in await self.match_store.list_expirable(now):
            if await self.match_store.compare_and_set(
                match.id, MatchStatus.ACCEPTED_BY_ONE, MatchStatus.EXPIRED, now
            ):
                expired += 1
        if expired:
            logger.info(f"Expired {expired} unreciprocated matches")
        return expired
