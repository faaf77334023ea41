"""structlog configuration shared by the API and scripts."""

from __future__ import annotations

import logging

import structlog

from pulsecheck.core.config import AppSettings


def configure_logging(settings: AppSettings | None = None) -> None:
    """Configure structlog once per process. JSON lines outside dev."""
    if settings is None:
        settings = AppSettings()

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.environment == "dev"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def redact_id(value: str | None) -> str:
    """Truncate an identifier for log context."""
    if not value:
        return ""
    return value[:8]
