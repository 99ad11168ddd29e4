"""Main entry point for running the FastAPI application with auto-reload."""
import logging

import uvicorn

from matchmaker.config import settings
from matchmaker.logging_config import setup_logging

logger = logging.getLogger("matchmaker.main")

if __name__ == "__main__":
    setup_logging()
    database = settings.db.url.split("@")[-1] if "@" in settings.db.url else settings.db.url
    logger.info(f"Starting {settings.app_name} v{settings.version}")
    logger.info(f"Debug mode: {settings.debug}, database: {database}")

    uvicorn.run(
        "matchmaker.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        reload_dirs=["matchmaker", "ai"] if settings.debug else None,
        log_level=settings.logging.level.lower(),
    )
