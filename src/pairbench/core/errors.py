"""
Structured error types for pairbench.

Every error pairbench raises derives from :class:`PairbenchError`, which
carries a category, a retryable flag, structured context and an optional
chained cause. The hierarchy mirrors the three failure scopes of a sweep:

    ┌──────────────────────────────────────────────────────────────┐
    │                       PairbenchError                          │
    │          (category, retryable, context, cause)                │
    ├──────────────────────────────────────────────────────────────┤
    │  ConfigError              ContainerRuntimeError   MatrixError │
    │  (sweep-level, fatal)     (per-pair, contained)   (internal)  │
    │       │                        │                              │
    │  NoClientsMatchedError    DockerNotFoundError                 │
    │  NoValidatorsMatchedError ContainerFileNotFoundError          │
    └──────────────────────────────────────────────────────────────┘

Configuration errors abort a sweep before any pair runs. Container runtime
errors never escape a pair: the run controller folds them into the pair's
verdict. Matrix errors signal a programming mistake (a cell written twice).

Examples:
    >>> error = NoClientsMatchedError("pattern did not match any clients")
    >>> error.category
    <ErrorCategory.CONFIG: 'CONFIG'>
    >>> error.with_context(pattern="geth.*").context.metadata["pattern"]
    'geth.*'

Tags:
    error-handling, exception-hierarchy, error-context
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"  # Empty pattern resolution, invalid settings
    CONTAINER = "CONTAINER"  # Container daemon / CLI failures
    NETWORK = "NETWORK"  # Dial and address failures
    TIMEOUT = "TIMEOUT"  # Deadline expiry
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-None fields are emitted by ``to_dict()``; anything that has no
    dedicated field lands in ``metadata``.
    """

    run_id: str | None = None
    client: str | None = None
    validator: str | None = None
    container_id: str | None = None
    image: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run_id", "client", "validator", "container_id", "image"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class PairbenchError(Exception):
    """Base exception for all pairbench errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    callers rarely need to pass them explicitly.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> PairbenchError:
        """Add context to this error (fluent API).

        Usage:
            raise ContainerRuntimeError("create failed").with_context(
                image="clients/geth:latest",
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (sweep-level, never retryable)
# =============================================================================


class ConfigError(PairbenchError):
    """Sweep configuration is unusable; nothing was run."""

    default_category = ErrorCategory.CONFIG


class NoClientsMatchedError(ConfigError):
    """The client pattern resolved to an empty set of images."""


class NoValidatorsMatchedError(ConfigError):
    """The validator pattern resolved to an empty set of images."""


# =============================================================================
# CONTAINER RUNTIME ERRORS (per-pair)
# =============================================================================


class ContainerRuntimeError(PairbenchError):
    """A container daemon operation failed."""

    default_category = ErrorCategory.CONTAINER


class DockerNotFoundError(ContainerRuntimeError):
    """Raised when the docker CLI is not available."""


class ContainerFileNotFoundError(ContainerRuntimeError):
    """Raised by ``copy_file`` when the source path does not exist."""


# =============================================================================
# MATRIX ERRORS
# =============================================================================


class MatrixError(PairbenchError):
    """Invalid write to a result matrix (duplicate cell, unknown key, sealed)."""

    default_category = ErrorCategory.INTERNAL


def categorize_error(error: Exception) -> ErrorCategory:
    """Return the category of any exception, INTERNAL for foreign ones."""
    if isinstance(error, PairbenchError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, OSError):
        return ErrorCategory.NETWORK
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "PairbenchError",
    "ConfigError",
    "NoClientsMatchedError",
    "NoValidatorsMatchedError",
    "ContainerRuntimeError",
    "DockerNotFoundError",
    "ContainerFileNotFoundError",
    "MatrixError",
    "categorize_error",
]
