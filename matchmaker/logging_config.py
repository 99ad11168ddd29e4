"""Logging setup driven by LOG_* settings.

Modules keep using stdlib `logging.getLogger(__name__)`; in json mode the
root handlers render every record through structlog's `ProcessorFormatter`.
"""
from __future__ import annotations

import logging
import sys

import structlog

from .config import settings

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Applied to records from plain stdlib loggers before rendering
_PRE_CHAIN = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def build_formatter(fmt: str) -> logging.Formatter:
    """Return the root handler formatter for "json" or "text"."""
    if fmt != "json":
        return logging.Formatter(TEXT_FORMAT)
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_PRE_CHAIN,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(default=str),
        ],
    )


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure the root logger.

    Safe to call more than once; previously installed handlers are replaced.

    Args:
        level: Log level name (default from settings)
        fmt: "json" or "text" (default from settings)
    """
    level = (level or settings.logging.level).upper()
    formatter = build_formatter(fmt or settings.logging.format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.logging.file:
        handlers.append(logging.FileHandler(settings.logging.file, encoding="utf-8"))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)

    # sentence-transformers and httpx are noisy at INFO
    for name in ("sentence_transformers", "httpx"):
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))
