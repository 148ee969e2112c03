"""structlog configuration.

Every module does `logger = structlog.get_logger()` and logs events
named `waypoint.<area>.<event>` with keyword context. This module wires
the processors once, at app creation: console output in development,
JSON lines everywhere else. Context bound through structlog.contextvars
(the request id, for instance) is merged into every entry.
"""

import logging

import structlog

from waypoint.config import settings

_configured = False


def configure_logging(level: str | None = None, json: bool | None = None) -> None:
    """Configure structlog. Safe to call more than once."""
    global _configured
    if _configured:
        return

    level_name = (level or settings.log_level).upper()
    if json is None:
        json = settings.log_json or not settings.is_relaxed

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        cache_logger_on_first_use=True,
    )
    _configured = True
