"""Initialize the database schema for the matching service.

Enables pgvector and creates every table. Run this before starting the API.
Pass --drop to recreate the tables from scratch.
"""

import asyncio
import logging
import sys

from sqlalchemy import text

from matchmaker.config import settings
from matchmaker.db import engine
from matchmaker.logging_config import setup_logging
from matchmaker.models import Base

logger = logging.getLogger("matchmaker.init_db")


async def init_database(drop: bool = False) -> None:
    """Create all database tables."""
    logger.info(f"Initializing database: {settings.db.url.split('@')[-1]}")

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        logger.info("Enabled pgvector extension")

        if drop:
            await conn.run_sync(Base.metadata.drop_all)
            logger.info("Dropped existing tables")

        await conn.run_sync(Base.metadata.create_all)

    logger.info(f"Tables ready: {', '.join(Base.metadata.tables.keys())}")
    await engine.dispose()


async def main() -> None:
    setup_logging(fmt="text")
    try:
        await init_database(drop="--drop" in sys.argv[1:])
    except Exception as e:
        logger.error(f"Error initializing database: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
