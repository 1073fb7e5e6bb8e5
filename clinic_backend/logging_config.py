"""Structured logging setup (structlog on top of the standard logging module)."""
from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(log_level: str = "INFO", json: bool = False) -> None:
    """
    Configure structlog for the whole application.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR
        json: render JSON lines (API) instead of the console renderer (CLI)
    """
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
