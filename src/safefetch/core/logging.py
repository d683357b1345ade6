# src/safefetch/core/logging.py
"""Logging setup for the safefetch CLI.

safefetch emits structured events (url_rejected, redirect_followed,
fetch_failed, ...) through structlog. configure_logging() renders them,
together with any stdlib records from httpx, as one stream on stderr:
console lines for people, JSON lines for log shippers. stdout is left to
`safefetch fetch` for response bodies.

The library never configures logging itself; only the CLI does.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

from safefetch.core.security.errors import redact_url

# httpx/httpcore log every connection at DEBUG, pinned IPs and auth headers
# included. They stay at WARNING or above whatever level safefetch runs at.
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "httpcore.connection",
    "httpcore.http11",
)

# Event fields that carry URLs (url, redirect_to, redirect_from, ...)
_URL_FIELD_SUFFIXES = ("url", "_to", "_from")


def _redact_urls(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Strip userinfo from URL-valued fields before they are rendered."""
    for key, value in event_dict.items():
        if isinstance(value, str) and key.endswith(_URL_FIELD_SUFFIXES):
            event_dict[key] = redact_url(value)
    return event_dict


def _drop_formatter_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    # ProcessorFormatter adds these to every record
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def _renderer(json_output: bool) -> list[Any]:
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=False)]


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> None:
    """Send structlog events and stdlib records to stderr in one format.

    Args:
        json_output: JSON lines if True, console lines otherwise
        level: Root log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        _redact_urls,
    ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Uncached so the CLI (and tests) can reconfigure per invocation
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(
            processors=[_drop_formatter_fields, *_renderer(json_output)],
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Bound structlog logger for ``name`` (usually ``__name__``)."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
