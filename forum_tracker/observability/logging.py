"""
Structured logging configuration using structlog.

Services log through structlog with key/value context; the low-level
helpers (HTTP client, repositories, database) use stdlib loggers. Both go
through one ProcessorFormatter, so every line comes out as JSON in
production and as coloured console output in development, with bound
context (request_id, tenant, ...) attached.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from forum_tracker.config.settings import get_settings

_HANDLER_NAME = "forum-tracker"
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg")


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def _final_processors(production: bool) -> list[Processor]:
    if production:
        return [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def setup_logging(level: str | None = None) -> None:
    """
    Configure structured logging for the application.

    Safe to call more than once (the CLI calls it per command); the
    stdout handler is replaced, not duplicated.

    Args:
        level: Overrides the configured log level (e.g. from ``--debug``)

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Origin refreshed", origin="https://forum.example.org", topics=30)
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()

    structlog.configure(
        processors=_shared_processors()
        + [
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta]
        + _final_processors(settings.is_production),
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Bind context variables (request_id, tenant, ...) to subsequent log lines."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
