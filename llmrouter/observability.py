"""Structured logging for the router.

Loggers are passed explicitly through `StreamOptions["logger"]`; the
module-level logger below is only the fallback for adapters called
without one.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """
    Configure structlog processors and output.

    Args:
        level (str): Minimum log level name.
        json (bool): Render one JSON object per line instead of the
                     colored console format.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(**bindings: Any) -> Any:
    """Return a lazy structlog logger with the given key/value pairs bound."""
    return structlog.get_logger("llmrouter", **bindings)
