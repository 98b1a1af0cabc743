"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

# Chatty third-party loggers held at WARNING unless the app runs at DEBUG.
QUIET_LIBRARIES = ("apscheduler", "httpx", "httpcore", "aiosqlite")


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog once for the whole process.

    Console rendering is the default; ``json_output`` switches to one JSON
    object per line for log shippers. Standard-library loggers used by the
    scheduler, database and HTTP clients go to the same stream.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(asctime)s [%(levelname)s] %(name)s: %(message)s", stream=sys.stderr, level=log_level)
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


@contextmanager
def tenant_context(tenant_id: str, **fields: Any) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``tenant_id``."""
    with structlog.contextvars.bound_contextvars(tenant_id=tenant_id, **fields):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named logger instance."""
    return structlog.get_logger(name)
