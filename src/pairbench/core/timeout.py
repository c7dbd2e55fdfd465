"""Deadline tracking for the two blocking points of a pair run.

A pair blocks in exactly two places: the readiness poll loop and the wait
for the validator to exit. Both accept a :class:`Deadline` so a hung client
or validator cannot stall a sweep forever. An unbounded deadline
(``seconds=None``) reproduces the historical wait-forever behaviour.

Examples:
    >>> deadline = Deadline.start(30.0, operation="client.readiness")
    >>> deadline.is_expired()
    False
    >>> Deadline.start(None).remaining() is None
    True
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Inherits from built-in TimeoutError for broad exception handling.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"

        super().__init__(msg)


@dataclass
class Deadline:
    """Absolute deadline on the monotonic clock.

    Attributes:
        timeout_seconds: Original timeout, or None for no limit
        operation: Name/description of the operation
        start_time: When the deadline started
    """

    timeout_seconds: float | None
    operation: str = "operation"
    start_time: float = field(default_factory=time.monotonic)

    @classmethod
    def start(cls, seconds: float | None, operation: str = "operation") -> Deadline:
        return cls(timeout_seconds=seconds, operation=operation)

    @property
    def elapsed(self) -> float:
        """Elapsed time since start in seconds."""
        return time.monotonic() - self.start_time

    def remaining(self) -> float | None:
        """Seconds left (negative once expired), None when unbounded."""
        if self.timeout_seconds is None:
            return None
        return self.start_time + self.timeout_seconds - time.monotonic()

    def is_expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


__all__ = ["Deadline", "TimeoutExpired"]
