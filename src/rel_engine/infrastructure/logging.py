"""Structured logging configuration.

Statement execution binds a per-statement context (statement id and type)
through structlog's context variables, so every event emitted while a
statement runs carries the same identifiers.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Generator, TextIO

import structlog
from structlog.types import Processor


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    stream: TextIO | None = None,
) -> None:
    """
    Set up structured logging with structlog.

    Events are rendered one per line to ``stream`` (stdout by default).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
        stream: Destination of rendered events
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level}")

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream is None and sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a bound logger instance.

    Args:
        name: Logger name (module name typically)
        **initial_context: Initial context to bind to the logger

    Returns:
        A bound structlog logger
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


@contextmanager
def statement_context(statement_type: str, **extra: Any) -> Generator[str, None, None]:
    """
    Bind a statement id and type to every log event in the block.

    Args:
        statement_type: Kind of statement being executed (e.g. "select")
        **extra: Additional context values

    Yields:
        The generated statement id
    """
    statement_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(
        statement_id=statement_id, statement_type=statement_type, **extra
    ):
        yield statement_id
