"""Structured logging setup."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from atomchat.models.config import LoggingConfig


def configure_logging(config: LoggingConfig | None = None, service_name: str = "atomchat") -> None:
    """
    Route structlog through stdlib logging with JSON or console rendering.

    Call once per process, before the first handler runs. Context bound with
    ``structlog.contextvars`` (for example the callable name bound by
    :mod:`atomchat.functions`) is merged into every entry.
    """
    cfg = config or LoggingConfig()
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if cfg.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)
