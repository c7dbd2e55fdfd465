"""
pairbench logging - structured logging shared by every pairbench module.

Configures structlog once at startup and hands out bound loggers. Every
module does ``logger = get_logger(__name__)`` and logs dotted event names
with key/value fields::

    logger.info("pair.passed", client="geth", validator="rpc", seconds=4.2)

Output:
    - JSON (one object per line) when stdout is not a TTY, with
      Elasticsearch/ECS-compatible field names (``@timestamp``, ``log.level``)
    - Colored console output for interactive terminals

Context:
    A sweep binds ``run_id`` for its whole lifetime and every pair binds
    ``client`` / ``validator`` through :class:`LogContext`, so container
    events can be correlated back to the pair that produced them.

Examples:
    >>> from pairbench.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> with LogContext(client="geth", validator="rpc"):
    ...     logger.info("pair.start")

Tags:
    logging, structlog, observability, ecs, json-logging
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog._config import BoundLoggerLazyProxy
from structlog.types import EventDict, Processor, WrappedLogger

# Store service name for metadata
_SERVICE_NAME = "pairbench"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "pairbench",
    add_timestamp: bool = True,
    stream: TextIO | None = None,
    cache_loggers: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
        stream: Output stream (default stdout); the CLI logs to stderr so
            that --json output stays parseable
        cache_loggers: Freeze each logger on first use. Tests pass False so
            that later reconfiguration (or ``capture_logs``) still reaches
            module-level loggers

    Example:
        # CI (JSON for log aggregation)
        configure_logging(level="INFO", json_format=True)

        # Local run (auto-detect: colored console if tty)
        configure_logging(level="DEBUG")
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not (stream or sys.stdout).isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(_elasticsearch_compatible)
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=cache_loggers,
    )

    # Configure standard library logging too
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        structlog BoundLogger with ``logger=name`` bound
    """
    if name is None:
        return structlog.get_logger()
    # ``logger`` collides with wrap_logger's first parameter, so pass it via
    # initial_values on the same lazy proxy structlog.get_logger() returns.
    return BoundLoggerLazyProxy(None, initial_values={"logger": name}, logger_factory_args=())


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs.

    Example:
        bind_context(run_id="abc123")
        logger.info("sweep.start")  # Includes run_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(client="geth", validator="rpc"):
            logger.info("pair.start")
            logger.info("pair.complete")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
