"""
Structured logging infrastructure using structlog.

This module provides centralized logging configuration with:
- JSON formatting for production
- Console formatting for development
- Output to stdout, stderr or the journal itself
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from sdjournal.utils.config import get_config


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log entries."""
    event_dict["app"] = "sdjournal"
    return event_dict


def _output_stream(log_output: str) -> Any:
    if log_output == "stdout":
        return sys.stdout
    if log_output == "journal":
        # Imported here, the writer depends on the submit path which logs
        from sdjournal.writer import JournalWriter

        return JournalWriter()
    return sys.stderr


def configure_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_output: str = "stdout",
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Defaults to ``logging.level`` from the configuration.
        log_format: Output format (json or console). Defaults to
            ``logging.format`` from the configuration.
        log_output: Output destination (stdout, stderr or journal)

    Note:
        The journal destination only understands JSON lines, so
        ``log_format`` is forced to json when ``log_output`` is journal.
    """
    config = get_config()
    log_level = log_level or config.get("logging.level", "INFO")
    log_format = log_format or config.get("logging.format", "json")

    if log_output == "journal":
        log_format = "json"

    logging.basicConfig(
        format="%(message)s",
        stream=_output_stream(log_output),
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:  # console format
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
