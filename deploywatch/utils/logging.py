"""Logging configuration using structlog."""

import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from deploywatch.config import settings


def build_handlers(
    log_directory: str | None = None, log_file_name: str | None = None
) -> list[logging.Handler]:
    """Stdout handler, plus a file handler when a log directory is set."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if not log_directory:
        return handlers

    log_dir = Path(log_directory)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / (log_file_name or settings.log_file_name)
    handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    return handlers


def configure_logging() -> None:
    """Configure structured logging for the application."""
    handlers = build_handlers(settings.log_directory, settings.log_file_name)

    # Set up standard library logging
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.log_level),
        handlers=handlers,
    )

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Add renderer based on format
    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
