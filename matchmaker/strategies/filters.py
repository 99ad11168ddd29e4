"""Eligibility filters applied to the candidate pool.

Every filter keeps the relative order of its input and only removes ids, so
a chain is a set intersection and yields the same list in any order.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from ..directory import MemberDirectory
from ..errors import NotFound
from ..match_store import MatchStore

logger = logging.getLogger(__name__)


class FilterStrategy(ABC):

    @abstractmethod
    async def filter(self, source_user_id: str, candidate_ids: list[str]) -> list[str]:
        """Return the surviving subset of `candidate_ids`."""

    def get_name(self) -> str:
        return type(self).__name__


class PriorMatchesFilter(FilterStrategy):
    """Drops anyone who already has a match row with the source, in any status.

    Users should never see the same person twice.
    """

    def __init__(self, match_store: MatchStore) -> None:
        self.match_store = match_store

    async def filter(self, source_user_id: str, candidate_ids: list[str]) -> list[str]:
        if not candidate_ids:
            return []
        exclude = await self.match_store.partner_ids(source_user_id)
        return [c for c in candidate_ids if c not in exclude]


class BlockedUsersFilter(FilterStrategy):
    """Drops users the source blocked or was blocked by."""

    def __init__(self, directory: MemberDirectory) -> None:
        self.directory = directory

    async def filter(self, source_user_id: str, candidate_ids: list[str]) -> list[str]:
        if not candidate_ids:
            return []
        exclude = await self.directory.blocked_user_ids(source_user_id)
        return [c for c in candidate_ids if c not in exclude]


class TenantIsolationFilter(FilterStrategy):
    """Keeps only candidates in the source's organization."""

    def __init__(self, directory: MemberDirectory) -> None:
        self.directory = directory

    async def filter(self, source_user_id: str, candidate_ids: list[str]) -> list[str]:
        if not candidate_ids:
            return []
        source = await self.directory.get_member(source_user_id)
        if source is None:
            raise NotFound(f"Source user {source_user_id} not found")

        members = await self.directory.get_members(candidate_ids)
        return [
            c for c in candidate_ids
            if c in members and members[c].org_id == source.org_id
        ]


class CompositeFilter(FilterStrategy):
    """Chains filters; stops early once nothing is left."""

    def __init__(self, filters: list[FilterStrategy]) -> None:
        self.filters = list(filters)

    async def filter(self, source_user_id: str, candidate_ids: list[str]) -> list[str]:
        filtered = list(candidate_ids)
        for strategy in self.filters:
            if not filtered:
                break
            before = len(filtered)
            filtered = await strategy.filter(source_user_id, filtered)
            logger.debug(f"{strategy.get_name()} removed {before - len(filtered)} candidates")
        return filtered
