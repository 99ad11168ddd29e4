"""Member directory: users, organizations, profiles and blocks.

Read side for the matching pipeline plus the profile writes the onboarding
flow needs. Admin CRUD over users and organizations lives outside this
service; the in-memory directory exposes small seeding helpers instead.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased, selectinload

from . import models
from .domain import ConnectionType, Member, ProfileData, UserStatus, utcnow
from .errors import Conflict, NotFound
from .vector_store import InMemoryVectorStore

logger = logging.getLogger(__name__)


class MemberDirectory(ABC):
    """Lookup interface over organization members."""

    @abstractmethod
    async def get_member(self, user_id: str) -> Member | None:
        ...

    @abstractmethod
    async def get_members(self, user_ids: list[str]) -> dict[str, Member]:
        ...

    @abstractmethod
    async def list_candidate_ids(self, source_user_id: str, limit: int) -> list[str]:
        """Active users in the source's organization with a stored embedding.

        The source is excluded, and an unknown source yields an empty list.
        `limit` applies after the organization scope.
        """

    @abstractmethod
    async def blocked_user_ids(self, user_id: str) -> set[str]:
        """Users in a block relationship with `user_id`, in either direction."""

    @abstractmethod
    async def get_profile(self, profile_id: str) -> ProfileData | None:
        ...

    @abstractmethod
    async def get_profile_for_user(self, user_id: str) -> ProfileData | None:
        ...

    @abstractmethod
    async def create_profile(self, profile: ProfileData) -> ProfileData:
        """Persist a new profile.

        Raises:
            Conflict: If the user already has a profile.
        """

    @abstractmethod
    async def save_profile(self, profile: ProfileData) -> ProfileData:
        """Persist changes to an existing profile."""


class InMemoryDirectory(MemberDirectory):
    """Directory held in dicts; candidate listing consults the vector store."""

    def __init__(self, vector_store: InMemoryVectorStore) -> None:
        self._vector_store = vector_store
        self._orgs: dict[str, str] = {}
        self._members: dict[str, Member] = {}
        self._profiles: dict[str, ProfileData] = {}
        self._blocks: set[tuple[str, str]] = set()
        self._lock = asyncio.Lock()

    def add_organization(self, org_id: str, domain: str) -> None:
        self._orgs[org_id] = domain

    def add_member(
        self,
        user_id: str,
        *,
        org_id: str,
        name: str = "",
        email: str | None = None,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> Member:
        if org_id not in self._orgs:
            raise NotFound(f"Organization {org_id} not found")
        member = Member(
            user_id=user_id,
            name=name or user_id,
            email=email or f"{user_id}@{self._orgs[org_id]}",
            org_id=org_id,
            org_domain=self._orgs[org_id],
            status=status,
        )
        self._members[user_id] = member
        return member

    def block(self, reporter_id: str, reported_id: str) -> None:
        self._blocks.add((reporter_id, reported_id))

    async def get_member(self, user_id: str) -> Member | None:
        return self._members.get(user_id)

    async def get_members(self, user_ids: list[str]) -> dict[str, Member]:
        return {uid: self._members[uid] for uid in user_ids if uid in self._members}

    async def list_candidate_ids(self, source_user_id: str, limit: int) -> list[str]:
        source = self._members.get(source_user_id)
        if source is None:
            return []
        with_embeddings = await self._vector_store.user_ids()
        candidates = [
            uid
            for uid, member in self._members.items()
            if uid != source_user_id
            and member.org_id == source.org_id
            and member.status == UserStatus.ACTIVE
            and uid in with_embeddings
        ]
        return candidates[:limit]

    async def blocked_user_ids(self, user_id: str) -> set[str]:
        blocked = set()
        for reporter_id, reported_id in self._blocks:
            if reporter_id == user_id:
                blocked.add(reported_id)
            elif reported_id == user_id:
                blocked.add(reporter_id)
        return blocked

    async def get_profile(self, profile_id: str) -> ProfileData | None:
        return self._profiles.get(profile_id)

    async def get_profile_for_user(self, user_id: str) -> ProfileData | None:
        member = self._members.get(user_id)
        return member.profile if member else None

    async def create_profile(self, profile: ProfileData) -> ProfileData:
        async with self._lock:
            member = self._members.get(profile.user_id)
            if member is None:
                raise NotFound(f"User {profile.user_id} not found")
            if member.profile is not None:
                raise Conflict("User has already completed onboarding")
            member.profile = profile
            self._profiles[profile.id] = profile
        return profile

    async def save_profile(self, profile: ProfileData) -> ProfileData:
        async with self._lock:
            member = self._members.get(profile.user_id)
            if member is None or member.profile is None:
                raise NotFound("Profile not found")
            profile.updated_at = utcnow()
            member.profile = profile
            self._profiles[profile.id] = profile
        return profile


def _to_profile(row: models.Profile) -> ProfileData:
    return ProfileData(
        id=row.id,
        user_id=row.user_id,
        niche_interest=row.niche_interest,
        project=row.project,
        rabbit_hole=row.rabbit_hole,
        connection_type=ConnectionType(row.connection_type),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_member(row: models.User) -> Member:
    return Member(
        user_id=row.id,
        name=row.name,
        email=row.email,
        org_id=row.org_id,
        org_domain=row.org.domain,
        status=UserStatus(row.status),
        profile=_to_profile(row.profile) if row.profile is not None else None,
    )


class SqlDirectory(MemberDirectory):
    """Directory backed by the users/orgs/profiles/blocked_pairs tables."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    def _member_query(self):
        return select(models.User).options(
            selectinload(models.User.org),
            selectinload(models.User.profile),
        )

    async def get_member(self, user_id: str) -> Member | None:
        async with self._session_maker() as session:
            result = await session.execute(self._member_query().where(models.User.id == user_id))
            row = result.scalar_one_or_none()
            return _to_member(row) if row is not None else None

    async def get_members(self, user_ids: list[str]) -> dict[str, Member]:
        if not user_ids:
            return {}
        async with self._session_maker() as session:
            result = await session.execute(self._member_query().where(models.User.id.in_(user_ids)))
            return {row.id: _to_member(row) for row in result.scalars().all()}

    async def list_candidate_ids(self, source_user_id: str, limit: int) -> list[str]:
        source = aliased(models.User)
        query = (
            select(models.User.id)
            .join(models.Embedding, models.Embedding.user_id == models.User.id)
            .join(source, source.org_id == models.User.org_id)
            .where(
                source.id == source_user_id,
                models.User.id != source_user_id,
                models.User.status == UserStatus.ACTIVE.value,
            )
            .order_by(models.User.created_at, models.User.id)
            .limit(limit)
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def blocked_user_ids(self, user_id: str) -> set[str]:
        query = select(models.BlockedPair.reporter_id, models.BlockedPair.reported_id).where(
            or_(
                models.BlockedPair.reporter_id == user_id,
                models.BlockedPair.reported_id == user_id,
            )
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            rows = result.fetchall()
        return {reported if reporter == user_id else reporter for reporter, reported in rows}

    async def get_profile(self, profile_id: str) -> ProfileData | None:
        async with self._session_maker() as session:
            row = await session.get(models.Profile, profile_id)
            return _to_profile(row) if row is not None else None

    async def get_profile_for_user(self, user_id: str) -> ProfileData | None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(models.Profile).where(models.Profile.user_id == user_id)
            )
            row = result.scalar_one_or_none()
            return _to_profile(row) if row is not None else None

    async def create_profile(self, profile: ProfileData) -> ProfileData:
        async with self._session_maker() as session:
            if await session.get(models.User, profile.user_id) is None:
                raise NotFound(f"User {profile.user_id} not found")
            session.add(
                models.Profile(
                    id=profile.id,
                    user_id=profile.user_id,
                    niche_interest=profile.niche_interest,
                    project=profile.project,
                    rabbit_hole=profile.rabbit_hole,
                    connection_type=profile.connection_type.value,
                    created_at=profile.created_at,
                    updated_at=profile.updated_at,
                )
            )
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise Conflict("User has already completed onboarding") from e
        return profile

    async def save_profile(self, profile: ProfileData) -> ProfileData:
        async with self._session_maker() as session:
            row = await session.get(models.Profile, profile.id)
            if row is None:
                raise NotFound("Profile not found")
            row.niche_interest = profile.niche_interest
            row.project = profile.project
            row.rabbit_hole = profile.rabbit_hole
            row.connection_type = profile.connection_type.value
            row.updated_at = utcnow()
            await session.commit()
            profile.updated_at = row.updated_at
        return profile
