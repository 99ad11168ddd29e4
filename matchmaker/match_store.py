"""Match and intro persistence.

Both adapters guarantee the two properties the orchestrator relies on:
`insert_if_absent` is atomic on the canonical pair (and on intro match_id),
and `compare_and_set` only moves a match out of the status it expects.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import models
from .domain import IntroRecord, MatchRecord, canonical_pair, utcnow
from .state_machine import MatchStatus

logger = logging.getLogger(__name__)


class MatchStore(ABC):

    @abstractmethod
    async def get(self, match_id: str) -> MatchRecord | None:
        ...

    @abstractmethod
    async def get_by_pair(self, user_id: str, other_id: str) -> MatchRecord | None:
        ...

    @abstractmethod
    async def partner_ids(self, user_id: str) -> set[str]:
        """Everyone `user_id` has a match row with, whatever its status."""

    @abstractmethod
    async def insert_if_absent(self, match: MatchRecord) -> tuple[MatchRecord, bool]:
        """Insert unless the pair already has a row.

        Returns:
            The stored row and whether this call created it.
        """

    @abstractmethod
    async def compare_and_set(
        self,
        match_id: str,
        expected: MatchStatus,
        new: MatchStatus,
        now: datetime | None = None,
    ) -> bool:
        """Set `new` only if the row still has `expected`; report success."""

    @abstractmethod
    async def list_expirable(self, now: datetime) -> list[MatchRecord]:
        """Unreciprocated accepts whose expiry has passed."""

    @abstractmethod
    async def get_intro(self, intro_id: str) -> IntroRecord | None:
        ...

    @abstractmethod
    async def get_intro_by_match(self, match_id: str) -> IntroRecord | None:
        ...

    @abstractmethod
    async def insert_intro_if_absent(self, intro: IntroRecord) -> tuple[IntroRecord, bool]:
        ...

    @abstractmethod
    async def list_intros_for_user(
        self,
        user_id: str,
        statuses: tuple[str, ...],
    ) -> list[tuple[IntroRecord, MatchRecord]]:
        """Intros on the user's matches, newest first."""

    @abstractmethod
    async def set_intro_status(self, intro_id: str, status: str) -> bool:
        ...


class InMemoryMatchStore(MatchStore):
    """Dict-backed store; a single lock makes insert and CAS atomic."""

    def __init__(self) -> None:
        self._matches: dict[str, MatchRecord] = {}
        self._by_pair: dict[tuple[str, str], str] = {}
        self._intros: dict[str, IntroRecord] = {}
        self._intro_by_match: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, match_id: str) -> MatchRecord | None:
        return self._matches.get(match_id)

    async def get_by_pair(self, user_id: str, other_id: str) -> MatchRecord | None:
        match_id = self._by_pair.get(canonical_pair(user_id, other_id))
        return self._matches.get(match_id) if match_id else None

    async def partner_ids(self, user_id: str) -> set[str]:
        partners = set()
        for user_a, user_b in self._by_pair:
            if user_a == user_id:
                partners.add(user_b)
            elif user_b == user_id:
                partners.add(user_a)
        return partners

    async def insert_if_absent(self, match: MatchRecord) -> tuple[MatchRecord, bool]:
        key = (match.user_a_id, match.user_b_id)
        async with self._lock:
            existing_id = self._by_pair.get(key)
            if existing_id is not None:
                return self._matches[existing_id], False
            self._matches[match.id] = match
            self._by_pair[key] = match.id
            return match, True

    async def compare_and_set(
        self,
        match_id: str,
        expected: MatchStatus,
        new: MatchStatus,
        now: datetime | None = None,
    ) -> bool:
        async with self._lock:
            match = self._matches.get(match_id)
            if match is None or match.status != expected.value:
                return False
            match.status = new.value
            match.updated_at = now or utcnow()
            return True

    async def list_expirable(self, now: datetime) -> list[MatchRecord]:
        return [
            m
            for m in self._matches.values()
            if m.status == MatchStatus.ACCEPTED_BY_ONE.value
            and m.expires_at is not None
            and m.expires_at <= now
        ]

    async def get_intro(self, intro_id: str) -> IntroRecord | None:
        return self._intros.get(intro_id)

    async def get_intro_by_match(self, match_id: str) -> IntroRecord | None:
        intro_id = self._intro_by_match.get(match_id)
        return self._intros.get(intro_id) if intro_id else None

    async def insert_intro_if_absent(self, intro: IntroRecord) -> tuple[IntroRecord, bool]:
        async with self._lock:
            existing_id = self._intro_by_match.get(intro.match_id)
            if existing_id is not None:
                return self._intros[existing_id], False
            self._intros[intro.id] = intro
            self._intro_by_match[intro.match_id] = intro.id
            return intro, True

    async def list_intros_for_user(
        self,
        user_id: str,
        statuses: tuple[str, ...],
    ) -> list[tuple[IntroRecord, MatchRecord]]:
        rows = []
        for intro in self._intros.values():
            match = self._matches[intro.match_id]
            if intro.status in statuses and user_id in (match.user_a_id, match.user_b_id):
                rows.append((intro, match))
        rows.sort(key=lambda row: row[0].created_at, reverse=True)
        return rows

    async def set_intro_status(self, intro_id: str, status: str) -> bool:
        async with self._lock:
            intro = self._intros.get(intro_id)
            if intro is None:
                return False
            intro.status = status
            return True


def _to_match(row: models.Match) -> MatchRecord:
    return MatchRecord(
        id=row.id,
        user_a_id=row.user_a_id,
        user_b_id=row.user_b_id,
        initiator_id=row.initiator_id,
        status=row.status,
        similarity_score=row.similarity_score,
        diversity_score=row.diversity_score,
        final_score=row.final_score,
        reasons=list(row.reasons or []),
        shared_interest=row.shared_interest,
        context=row.context,
        expires_at=row.expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_intro(row: models.Intro) -> IntroRecord:
    return IntroRecord(
        id=row.id,
        match_id=row.match_id,
        user_a_status=row.user_a_status,
        user_b_status=row.user_b_status,
        status=row.status,
        intro_sent_at=row.intro_sent_at,
        created_at=row.created_at,
    )


class SqlMatchStore(MatchStore):
    """Store over the `matches` and `intros` tables.

    The unique constraints on (user_a_id, user_b_id) and intros.match_id
    decide insert races; status updates are conditional UPDATEs.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def _select_pair(self, session: AsyncSession, user_a: str, user_b: str) -> models.Match | None:
        result = await session.execute(
            select(models.Match).where(
                models.Match.user_a_id == user_a,
                models.Match.user_b_id == user_b,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, match_id: str) -> MatchRecord | None:
        async with self._session_maker() as session:
            row = await session.get(models.Match, match_id)
            return _to_match(row) if row is not None else None

    async def get_by_pair(self, user_id: str, other_id: str) -> MatchRecord | None:
        user_a, user_b = canonical_pair(user_id, other_id)
        async with self._session_maker() as session:
            row = await self._select_pair(session, user_a, user_b)
            return _to_match(row) if row is not None else None

    async def partner_ids(self, user_id: str) -> set[str]:
        query = select(models.Match.user_a_id, models.Match.user_b_id).where(
            or_(
                models.Match.user_a_id == user_id,
                models.Match.user_b_id == user_id,
            )
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            rows = result.fetchall()
        return {user_b if user_a == user_id else user_a for user_a, user_b in rows}

    async def insert_if_absent(self, match: MatchRecord) -> tuple[MatchRecord, bool]:
        async with self._session_maker() as session:
            session.add(
                models.Match(
                    id=match.id,
                    user_a_id=match.user_a_id,
                    user_b_id=match.user_b_id,
                    initiator_id=match.initiator_id,
                    status=match.status,
                    similarity_score=match.similarity_score,
                    diversity_score=match.diversity_score,
                    final_score=match.final_score,
                    reasons=list(match.reasons),
                    shared_interest=match.shared_interest,
                    context=match.context,
                    expires_at=match.expires_at,
                    created_at=match.created_at,
                    updated_at=match.updated_at,
                )
            )
            try:
                await session.commit()
                return match, True
            except IntegrityError:
                await session.rollback()
                existing = await self._select_pair(session, match.user_a_id, match.user_b_id)
                if existing is None:
                    raise
                logger.info(
                    f"Match for pair ({match.user_a_id}, {match.user_b_id}) already exists as {existing.id}"
                )
                return _to_match(existing), False

    async def compare_and_set(
        self,
        match_id: str,
        expected: MatchStatus,
        new: MatchStatus,
        now: datetime | None = None,
    ) -> bool:
        stmt = (
            update(models.Match)
            .where(
                models.Match.id == match_id,
                models.Match.status == expected.value,
            )
            .values(status=new.value, updated_at=now or utcnow())
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def list_expirable(self, now: datetime) -> list[MatchRecord]:
        query = select(models.Match).where(
            models.Match.status == MatchStatus.ACCEPTED_BY_ONE.value,
            models.Match.expires_at.is_not(None),
            models.Match.expires_at <= now,
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            return [_to_match(row) for row in result.scalars().all()]

    async def get_intro(self, intro_id: str) -> IntroRecord | None:
        async with self._session_maker() as session:
            row = await session.get(models.Intro, intro_id)
            return _to_intro(row) if row is not None else None

    async def get_intro_by_match(self, match_id: str) -> IntroRecord | None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(models.Intro).where(models.Intro.match_id == match_id)
            )
            row = result.scalar_one_or_none()
            return _to_intro(row) if row is not None else None

    async def insert_intro_if_absent(self, intro: IntroRecord) -> tuple[IntroRecord, bool]:
        async with self._session_maker() as session:
            session.add(
                models.Intro(
                    id=intro.id,
                    match_id=intro.match_id,
                    user_a_status=intro.user_a_status,
                    user_b_status=intro.user_b_status,
                    status=intro.status,
                    intro_sent_at=intro.intro_sent_at,
                    created_at=intro.created_at,
                )
            )
            try:
                await session.commit()
                return intro, True
            except IntegrityError:
                await session.rollback()
                result = await session.execute(
                    select(models.Intro).where(models.Intro.match_id == intro.match_id)
                )
                existing = result.scalar_one_or_none()
                if existing is None:
                    raise
                return _to_intro(existing), False

    async def list_intros_for_user(
        self,
        user_id: str,
        statuses: tuple[str, ...],
    ) -> list[tuple[IntroRecord, MatchRecord]]:
        query = (
            select(models.Intro, models.Match)
            .join(models.Match, models.Intro.match_id == models.Match.id)
            .where(
                models.Intro.status.in_(statuses),
                or_(
                    models.Match.user_a_id == user_id,
                    models.Match.user_b_id == user_id,
                ),
            )
            .order_by(models.Intro.created_at.desc())
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            return [(_to_intro(intro), _to_match(match)) for intro, match in result.all()]

    async def set_intro_status(self, intro_id: str, status: str) -> bool:
        async with self._session_maker() as session:
            result = await session.execute(
                update(models.Intro).where(models.Intro.id == intro_id).values(status=status)
            )
            await session.commit()
            return result.rowcount == 1
