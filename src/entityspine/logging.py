"""
Structured logging for entityspine.

The engine logs its lifecycle decisions (inserts, updates, cancellations,
lazy loads) as structlog events. Applications that already configure
structlog get the events in their own pipeline; others can call
``configure_logging()`` once at startup.

Every write the persistence engine performs runs inside
``entity_context(model, key)``, so any event emitted underneath it (a hook
cancellation, a statement log, an application listener's own log line)
carries ``entity.model`` and ``entity.key`` without passing them around.

Architecture:
    ::

        configure_logging()                  level from OrmSettings.log_level
                │
                ▼
        structlog processor chain:
          1. merge_contextvars      ← entity_context(model, key)
          2. add_log_level
          3. TimeStamper (iso, utc)
          4. JSONRenderer | ConsoleRenderer

        PersistenceEngine.save(post)
          └── with entity_context("Post", 7):
                 logger.debug("entity_updated")   → entity.model=Post entity.key=7

Examples:
    >>> configure_logging(level="DEBUG", json_format=True)
    >>> logger = get_logger(__name__)
    >>> with entity_context("User", 1):
    ...     logger.info("audit_written")

Tags:
    logging, structlog, observability, entityspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import Processor

from entityspine.settings import OrmSettings, get_settings

ENTITY_MODEL_KEY = "entity.model"
ENTITY_KEY_KEY = "entity.key"


def configure_logging(
    level: str | None = None,
    json_format: bool | None = None,
    settings: OrmSettings | None = None,
) -> None:
    """Route entityspine events through a structlog pipeline.

    Args:
        level: DEBUG | INFO | WARNING | ERROR; defaults to ``settings.log_level``
        json_format: JSON lines when True, console when False, JSON off a tty when None
        settings: settings to read the level from (cached settings when omitted)
    """
    if level is None:
        level = (settings or get_settings()).log_level
    if json_format is None:
        json_format = not sys.stdout.isatty()

    renderer: Processor
    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


@contextmanager
def entity_context(model: str, key: Any) -> Iterator[dict[str, Any]]:
    """Bind the entity being written to every log event in the block.

    Nested blocks (a soft delete saving the same entity) rebind and restore
    the outer values on exit.
    """
    bound = {ENTITY_MODEL_KEY: model, ENTITY_KEY_KEY: key}
    with structlog.contextvars.bound_contextvars(**bound):
        yield bound


__all__ = ["configure_logging", "get_logger", "entity_context"]
