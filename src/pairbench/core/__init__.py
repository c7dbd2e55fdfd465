"""Shared primitives for pairbench: structured logging, errors, deadlines."""

from pairbench.core.errors import (
    ConfigError,
    ContainerFileNotFoundError,
    ContainerRuntimeError,
    DockerNotFoundError,
    MatrixError,
    NoClientsMatchedError,
    NoValidatorsMatchedError,
    PairbenchError,
)
from pairbench.core.logging import LogContext, configure_logging, get_logger
from pairbench.core.timeout import Deadline, TimeoutExpired

__all__ = [
    "ConfigError",
    "ContainerFileNotFoundError",
    "ContainerRuntimeError",
    "Deadline",
    "DockerNotFoundError",
    "LogContext",
    "MatrixError",
    "NoClientsMatchedError",
    "NoValidatorsMatchedError",
    "PairbenchError",
    "TimeoutExpired",
    "configure_logging",
    "get_logger",
]
