"""Composition root: builds the stores, strategies and services the API uses.

Strategies are composed explicitly by constructor; there is no registry.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai.provider import EmbeddingProvider

from .config import settings
from .directory import InMemoryDirectory, MemberDirectory, SqlDirectory
from .intros import IntroductionService
from .jobs import AsyncioJobQueue
from .match_store import InMemoryMatchStore, MatchStore, SqlMatchStore
from .notifications import LoggingNotifier, Notifier
from .pipelines.embedding import EmbeddingWorker
from .pipelines.matching import MatchingEngine
from .profiles import ProfileService
from .strategies.filters import BlockedUsersFilter, CompositeFilter, PriorMatchesFilter, TenantIsolationFilter
from .strategies.ranking import DiversityRankingStrategy
from .strategies.reasons import SharedTopicReasonGenerator
from .strategies.retrieval import CandidateRetriever
from .strategies.similarity import VectorSimilarityStrategy
from .vector_store import InMemoryVectorStore, PgVectorStore, VectorStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    directory: MemberDirectory
    vector_store: VectorStore
    match_store: MatchStore
    queue: AsyncioJobQueue
    profiles: ProfileService
    matching: MatchingEngine
    intros: IntroductionService

    async def shutdown(self) -> None:
        await self.queue.shutdown()


def build_services(
    *,
    directory: MemberDirectory,
    vector_store: VectorStore,
    match_store: MatchStore,
    provider: EmbeddingProvider,
    notifier: Notifier | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Services:
    """Wire the matching pipeline, the embedding queue and the intro flow."""
    queue = AsyncioJobQueue(EmbeddingWorker(directory, provider, vector_store), sleep=sleep)

    filter_strategy = CompositeFilter(
        [
            PriorMatchesFilter(match_store),
            BlockedUsersFilter(directory),
            TenantIsolationFilter(directory),
        ]
    )
    matching = MatchingEngine(
        vector_store=vector_store,
        retriever=CandidateRetriever(directory, vector_store),
        filter_strategy=filter_strategy,
        similarity_strategy=VectorSimilarityStrategy(vector_store),
        ranking_strategy=DiversityRankingStrategy(
            directory, diversity_weight=settings.matching.diversity_weight
        ),
        reason_generator=SharedTopicReasonGenerator(directory),
    )

    return Services(
        directory=directory,
        vector_store=vector_store,
        match_store=match_store,
        queue=queue,
        profiles=ProfileService(directory, vector_store, queue),
        matching=matching,
        intros=IntroductionService(match_store, directory, notifier or LoggingNotifier()),
    )


def build_in_memory_services(
    provider: EmbeddingProvider,
    *,
    notifier: Notifier | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Services:
    """All-in-memory wiring for tests and local runs."""
    vector_store = InMemoryVectorStore()
    return build_services(
        directory=InMemoryDirectory(vector_store),
        vector_store=vector_store,
        match_store=InMemoryMatchStore(),
        provider=provider,
        notifier=notifier,
        sleep=sleep,
    )


def build_sql_services(
    session_maker: async_sessionmaker[AsyncSession],
    provider: EmbeddingProvider | None = None,
) -> Services:
    """PostgreSQL + pgvector wiring used by the API in production."""
    if provider is None:
        # loads torch; keep it off the import path of the in-memory wiring
        from ai.embeddings import SentenceTransformerProvider

        provider = SentenceTransformerProvider()

    logger.info(f"Wiring SQL services (embedding model {settings.embeddings.model_name})")
    return build_services(
        directory=SqlDirectory(session_maker),
        vector_store=PgVectorStore(session_maker),
        match_store=SqlMatchStore(session_maker),
        provider=provider,
    )
