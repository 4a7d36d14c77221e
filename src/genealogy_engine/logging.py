"""Structlog setup for the engine and its CLI.

Events are JSON lines on stderr so command output on stdout stays readable.
Library modules only ever call ``structlog.get_logger(__name__)``.
"""
from __future__ import annotations

from typing import Literal

import logging
import sys
import structlog

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: LogLevel = "INFO") -> None:
    numeric = getattr(logging, level)
    logging.basicConfig(format="%(message)s", level=numeric, stream=sys.stderr, force=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        # Reconfigured per CLI invocation; cached loggers would keep a stale stream.
        cache_logger_on_first_use=False,
    )
