"""SQLAlchemy 2.x async database setup using asyncpg and pgvector.

This module defines the async engine and session factory but does not
hard-code any connection credentials.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings


def build_engine(url: str | None = None) -> AsyncEngine:
    """Create an async engine, defaulting to the configured database URL."""
    url = url or settings.db.url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.db.echo, future=True)
    return create_async_engine(
        url,
        echo=settings.db.echo,
        pool_size=settings.db.pool_size,
        max_overflow=settings.db.max_overflow,
        future=True,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False, class_=AsyncSession)


engine: AsyncEngine = build_engine()

AsyncSessionMaker = build_session_maker(engine)

