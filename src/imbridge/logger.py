"""Structured logging singleton.

Reads os.environ directly: the logger initializes before
pydantic Settings so config errors can be logged.

``LOG_FORMAT=json`` switches to one JSON object per line, which is what
launchd's ``StandardErrorPath`` log wants; the default is the console
renderer (colored on a tty).
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

LOGGER_NAME = "imbridge"

# aiosqlite logs every statement at DEBUG; one poll tick is several of them.
_NOISY_LOGGERS = ("aiosqlite", "asyncio")


def _output_processors(log_format: str) -> list[structlog.types.Processor]:
    if log_format.lower() == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def _setup_logging() -> structlog.stdlib.BoundLogger:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    # Configure stdlib root logger first so structlog's filter_by_level works
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            *_output_processors(os.environ.get("LOG_FORMAT", "console")),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(LOGGER_NAME)


logger = _setup_logging()


def set_level(level_name: str) -> None:
    """Apply the configured level after Settings load (LOG_LEVEL wins if set)."""
    if os.environ.get("LOG_LEVEL"):
        return
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.getLogger().setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))


def _uncaught_exception_handler(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _uncaught_exception_handler
