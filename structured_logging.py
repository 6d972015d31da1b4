"""structlog setup for the chart engine: console lines for scripts, JSON for services."""

from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

import structlog

from config import LogFormat, Settings, get_settings

# (level, format) currently applied to structlog
_applied: Optional[Tuple[int, LogFormat]] = None


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _renderer(fmt: LogFormat) -> Any:
    if fmt == LogFormat.json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def configure_structured_logging(settings: Optional[Settings] = None) -> None:
    """
    Apply the log level and format from `settings` (environment settings when
    omitted). Repeating a call with the same level and format does nothing;
    a different pair reconfigures structlog.
    """
    global _applied
    settings = settings or get_settings()
    wanted = (_level(settings.log_level), settings.log_format)
    if wanted == _applied:
        return

    level, fmt = wanted
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            _renderer(fmt),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _applied = wanted
