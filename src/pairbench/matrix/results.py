"""Result models for pairbench sweeps.

The models form a composition hierarchy: one :class:`RunVerdict` per
(client, validator) pair, collected into a :class:`ResultMatrix` by the
matrix orchestrator, and wrapped into a :class:`SweepResult` for reporting.

Key Concepts:
    RunVerdict: Frozen pydantic model. Built exactly once, after every step
        of the pair has finished; ``end >= start`` is enforced on construction.
    FailureDetail: Leaf cause of a failed pair (``create``, ``start``,
        ``inspect``, ``terminated``, ``probe``, ``timeout``, ``internal``).
        A non-zero validator exit code is an expected failure, not an error.
    ReadinessOutcome: Terminal outcome of one readiness wait.
    IdentityHandoff: Outcome of copying the client's identity
        script into the validator.
    ResultMatrix: ``client -> validator -> RunVerdict``. Every cell is
        written at most once; the matrix is sealed after the sweep.
    SweepResult: Serializable summary (``model_dump_json``) with an overall
        status and, for configuration failures, a single top-level error.

Architecture Decisions:
    - Pydantic v2 for verdicts and the sweep summary: ``model_dump_json()``
      feeds the JSON artifact and the ``--json`` CLI output.
    - Frozen dataclass for ReadinessOutcome: internal, never serialized.
    - ResultMatrix is a plain class guarding a nested dict with a lock that
      is held only for the duration of one cell insertion.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pairbench.core.errors import MatrixError

# ---------------------------------------------------------------------------
# Shared enums
# ---------------------------------------------------------------------------


class OverallStatus(str, Enum):
    """Overall status of a sweep."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"
    PENDING = "PENDING"


class FailureKind(str, Enum):
    """Leaf cause recorded in a failed verdict."""

    CREATE = "create"  # Container could not be created
    START = "start"  # Container could not be started
    INSPECT = "inspect"  # Container state could not be read
    TERMINATED = "terminated"  # Client exited during readiness wait
    PROBE = "probe"  # Readiness probe could not dial the client
    TIMEOUT = "timeout"  # Readiness or validator deadline expired
    WAIT = "wait"  # Waiting for the validator to exit failed
    INTERNAL = "internal"  # Unexpected exception


class ReadinessKind(str, Enum):
    """Terminal outcome of a readiness wait."""

    READY = "ready"
    PROCESS_EXITED = "process_exited"
    PROBE_ERROR = "probe_error"
    TIMEOUT = "timeout"


class IdentityHandoff(str, Enum):
    """Result of copying the client's identity script to the validator."""

    PRESENT = "present"
    ABSENT = "absent"  # Client image does not provide the script
    ERROR = "error"
    DISABLED = "disabled"  # No identity script configured


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReadinessOutcome:
    """Outcome of waiting for a client's service port."""

    kind: ReadinessKind
    message: str = ""
    elapsed_seconds: float = 0.0
    ip_address: str | None = None

    @property
    def ready(self) -> bool:
        return self.kind == ReadinessKind.READY


# ---------------------------------------------------------------------------
# Per-pair verdict
# ---------------------------------------------------------------------------


class FailureDetail(BaseModel):
    """Why a pair failed."""

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    message: str
    role: str | None = None  # "client" or "validator"

    def __str__(self) -> str:
        prefix = f"{self.role} " if self.role else ""
        return f"{prefix}{self.kind.value}: {self.message}"


class RunVerdict(BaseModel):
    """Outcome of one (client, validator) pair."""

    model_config = ConfigDict(frozen=True)

    client: str
    validator: str
    start: datetime
    end: datetime
    success: bool = False
    error: FailureDetail | None = None
    exit_code: int | None = None
    identity: IdentityHandoff | None = None
    client_id: str | None = None
    validator_id: str | None = None

    @model_validator(mode="after")
    def _check_times(self) -> RunVerdict:
        if self.end < self.start:
            raise ValueError("verdict end precedes start")
        if self.success and self.error is not None:
            raise ValueError("a verdict carrying an error cannot be successful")
        return self

    @property
    def passed(self) -> bool:
        return self.success and self.error is None

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()


# ---------------------------------------------------------------------------
# Result matrix
# ---------------------------------------------------------------------------


class ResultMatrix:
    """Mapping ``client -> validator -> RunVerdict`` for one sweep.

    Parameters
    ----------
    clients
        Client identifiers resolved at sweep start.
    validators
        Validator identifiers resolved at sweep start.
    """

    def __init__(self, clients: Iterable[str], validators: Iterable[str]) -> None:
        self._clients = list(dict.fromkeys(clients))
        self._validators = list(dict.fromkeys(validators))
        self._cells: dict[str, dict[str, RunVerdict]] = {c: {} for c in self._clients}
        self._lock = threading.Lock()
        self._sealed = False

    @property
    def clients(self) -> list[str]:
        return list(self._clients)

    @property
    def validators(self) -> list[str]:
        return list(self._validators)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def record(self, verdict: RunVerdict) -> None:
        """Publish a completed verdict into its cell (at most once)."""
        if verdict.client not in self._cells:
            raise MatrixError(f"Unknown client: {verdict.client!r}")
        if verdict.validator not in self._validators:
            raise MatrixError(f"Unknown validator: {verdict.validator!r}")
        with self._lock:
            if self._sealed:
                raise MatrixError("Result matrix is sealed")
            row = self._cells[verdict.client]
            if verdict.validator in row:
                raise MatrixError(
                    f"Verdict for ({verdict.client!r}, {verdict.validator!r}) already recorded"
                )
            row[verdict.validator] = verdict

    def seal(self) -> None:
        with self._lock:
            self._sealed = True

    def get(self, client: str, validator: str) -> RunVerdict | None:
        return self._cells.get(client, {}).get(validator)

    def missing(self) -> list[tuple[str, str]]:
        """Pairs that have no verdict yet."""
        return [
            (c, v)
            for v in self._validators
            for c in self._clients
            if v not in self._cells[c]
        ]

    @property
    def is_complete(self) -> bool:
        return not self.missing()

    def verdicts(self) -> Iterator[RunVerdict]:
        for row in self._cells.values():
            yield from row.values()

    @property
    def passed_count(self) -> int:
        return sum(1 for v in self.verdicts() if v.passed)

    @property
    def failed_count(self) -> int:
        return sum(1 for v in self.verdicts() if not v.passed)

    def __getitem__(self, client: str) -> dict[str, RunVerdict]:
        return dict(self._cells[client])

    def __contains__(self, key: object) -> bool:
        if isinstance(key, tuple) and len(key) == 2:
            return self.get(*key) is not None
        return key in self._cells

    def __len__(self) -> int:
        return len(self._cells)

    def __iter__(self) -> Iterator[str]:
        return iter(self._clients)

    def as_dict(self) -> dict[str, dict[str, RunVerdict]]:
        return {c: dict(row) for c, row in self._cells.items()}

    def __repr__(self) -> str:
        return (
            f"ResultMatrix(clients={len(self._clients)}, validators={len(self._validators)}, "
            f"passed={self.passed_count}, failed={self.failed_count})"
        )


# ---------------------------------------------------------------------------
# Sweep summary
# ---------------------------------------------------------------------------


class SweepResult(BaseModel):
    """Result of a full sweep across all resolved clients and validators."""

    run_id: str
    client_pattern: str = ""
    validator_pattern: str = ""
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0
    results: dict[str, dict[str, RunVerdict]] = Field(default_factory=dict)
    overall_status: OverallStatus = OverallStatus.PENDING
    summary: str = ""
    error: str | None = None

    def verdicts(self) -> list[RunVerdict]:
        return [v for row in self.results.values() for v in row.values()]

    def mark_complete(self) -> None:
        """Finalize the sweep: compute duration, status and summary."""
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        verdicts = self.verdicts()
        passed = sum(1 for v in verdicts if v.passed)

        if self.error:
            self.overall_status = OverallStatus.ERROR
        elif not verdicts:
            self.overall_status = OverallStatus.SKIPPED
        elif passed == len(verdicts):
            self.overall_status = OverallStatus.PASSED
        elif passed == 0:
            self.overall_status = OverallStatus.FAILED
        else:
            self.overall_status = OverallStatus.PARTIAL

        if self.error:
            self.summary = f"sweep aborted: {self.error}"
        else:
            self.summary = (
                f"{passed}/{len(verdicts)} pairs passed "
                f"({len(self.results)} clients) in {self.duration_seconds:.1f}s"
            )
