"""Structured logging configuration with structlog.

Production output is one JSON object per line for log aggregation;
development output is a readable console rendering. Modules log through
``structlog.get_logger(__name__)`` with event-style names and key-value
context, e.g. ``log.info("attestation_created", attestation_id=...)``.

Usage:
    # At application startup
    from covenant.observability import configure_logging

    configure_logging(environment="production", level="INFO")
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import structlog
from structlog.typing import Processor

LOG_LEVEL_ENV = "COVENANT_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _resolve_level(level: Optional[str]) -> int:
    level_name = (level or os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(environment: str = "production", level: Optional[str] = None) -> None:
    """Configure structlog once at process start.

    Args:
        environment: 'production' for JSON output, anything else for console.
        level: Log level name. Falls back to COVENANT_LOG_LEVEL, then INFO.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processors: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        final_processors = [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=shared_processors + final_processors,
        wrapper_class=structlog.make_filtering_bound_logger(_resolve_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
