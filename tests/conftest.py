"""Shared fixtures: in-memory stores, a fake embedding provider, recorders."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from matchmaker.directory import InMemoryDirectory
from matchmaker.domain import ConnectionType, Contact, Member, ProfileData
from matchmaker.match_store import InMemoryMatchStore
from matchmaker.notifications import Notifier
from matchmaker.services import build_services
from matchmaker.vector_store import InMemoryVectorStore


class RecordingNotifier(Notifier):
    """Keeps every notification instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[Contact, Contact, str, str]] = []

    async def notify_mutual_intro(self, recipient, other_party, shared_interest, context) -> None:
        self.sent.append((recipient, other_party, shared_interest, context))


class RecordingSleep:
    """Stands in for asyncio.sleep so retry backoff is observable and instant."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def directory(vector_store) -> InMemoryDirectory:
    directory = InMemoryDirectory(vector_store)
    directory.add_organization("org-1", "acme.com")
    directory.add_organization("org-2", "globex.com")
    return directory


@pytest.fixture
def match_store() -> InMemoryMatchStore:
    return InMemoryMatchStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def provider() -> AsyncMock:
    provider = AsyncMock()
    provider.embed.return_value = [1.0, 0.0, 0.0]
    return provider


@pytest.fixture
async def services(directory, vector_store, match_store, provider, notifier, sleep):
    services = build_services(
        directory=directory,
        vector_store=vector_store,
        match_store=match_store,
        provider=provider,
        notifier=notifier,
        sleep=sleep,
    )
    yield services
    await services.shutdown()


@pytest.fixture
def seed(directory, vector_store):
    """Add a member, optionally with a profile and a stored embedding."""

    async def _seed(
        user_id: str,
        *,
        org_id: str = "org-1",
        vector: list[float] | None = None,
        connection_type: ConnectionType = ConnectionType.COLLABORATION,
        niche_interest: str = "Urban beekeeping and pollinator habitats",
        project: str = "Mapping rooftop gardens across the city",
        rabbit_hole: str | None = None,
        with_profile: bool = True,
    ) -> Member:
        directory.add_member(user_id, org_id=org_id, name=user_id.title())
        if with_profile:
            await directory.create_profile(
                ProfileData(
                    user_id=user_id,
                    niche_interest=niche_interest,
                    project=project,
                    connection_type=connection_type,
                    rabbit_hole=rabbit_hole,
                )
            )
        if vector is not None:
            await vector_store.upsert(user_id, vector)
        return await directory.get_member(user_id)

    return _seed
