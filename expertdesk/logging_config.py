"""structlog setup shared by the API process and the seed script.

``LOG_LEVEL`` and ``LOG_FORMAT`` (``json`` or ``console``) come from the
environment unless the caller passes them. Events are snake_case names
with keyword fields; ``service`` is bound once per process and request
keys are bound per request by the middleware.
"""

import logging
import os
import sys
from typing import Any

import structlog

REQUEST_KEYS = ("request_id", "user_id")


def _renderers(json_format: bool) -> list[structlog.types.Processor]:
    if json_format:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(
    level: str | None = None,
    log_format: str | None = None,
    service_name: str = "expertdesk",
) -> None:
    """Send structlog events to stdout.

    Args:
        level: Level name; defaults to ``LOG_LEVEL`` or INFO
        log_format: ``json`` or ``console``; defaults to ``LOG_FORMAT`` or json
        service_name: Bound as ``service`` on every event
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    json_format = (log_format or os.getenv("LOG_FORMAT", "json")) == "json"

    # uvicorn and SQLAlchemy log through the stdlib onto the same stream
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            *_renderers(json_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(request_id: str, user_id: int | None = None, **kwargs: Any) -> None:
    """Attach request-scoped keys to every event until the request ends."""
    if user_id is not None:
        kwargs["user_id"] = user_id
    structlog.contextvars.bind_contextvars(request_id=request_id, **kwargs)


def clear_request_context(*keys: str) -> None:
    """Drop request-scoped keys; the ``service`` binding stays."""
    structlog.contextvars.unbind_contextvars(*(keys or REQUEST_KEYS))
