"""
Structured logging configuration using structlog.

JSON output in production, coloured console output in development.
Dispatch code binds store/order/assignment identifiers into the
context so every line emitted while handling a request carries them.
"""
import logging
import sys
from typing import Any

import structlog


def setup_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure structlog on top of the standard library logging module.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines when True, human-readable console output otherwise.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if json_format:
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


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for a module (pass ``__name__``)."""
    return structlog.get_logger(name)


def bind_dispatch_context(**values: Any) -> None:
    """Attach identifiers (store_id, order_id, ...) to every log line of the current task."""
    structlog.contextvars.bind_contextvars(
        **{k: v for k, v in values.items() if v is not None}
    )


def clear_dispatch_context() -> None:
    structlog.contextvars.clear_contextvars()
