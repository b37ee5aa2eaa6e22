"""
Structured logging infrastructure using structlog.

This module provides centralized logging configuration with:
- JSON formatting for machine consumption
- Console formatting for interactive use
- The process ID on every entry, since several processes share one log
  directory
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application and process context to log entries."""
    event_dict["app"] = "eventbus"
    event_dict["pid"] = os.getpid()
    return event_dict


def configure_logging(
    log_level: str = "WARNING",
    log_format: str = "console",
    log_output: str = "stderr",
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_output: Output destination (stdout, stderr, or file path)
    """
    handler_kwargs: dict = {}
    if log_output == "stdout":
        handler_kwargs["stream"] = sys.stdout
    elif log_output == "stderr":
        handler_kwargs["stream"] = sys.stderr
    else:
        log_path = Path(log_output).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler_kwargs["filename"] = str(log_path)

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        force=True,
        **handler_kwargs,
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
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=log_output in ("stdout", "stderr")),
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
