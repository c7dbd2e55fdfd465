"""pairbench.matrix — cross-product validation of client images.

Runs every (client image, validator image) pair: the client is started and
probed until its service port accepts connections, then the validator is
started with the client's address in its environment. The validator's exit
code is the verdict. Verdicts are collected into a client × validator
matrix.

Key Concepts:
    SweepConfig: Pydantic model selecting clients/validators and controlling
        deadlines, parallelism and output.
    MatrixOrchestrator: Config in, ``ResultMatrix`` (``sweep()``) or
        ``SweepResult`` (``run()``) out.
    PairRunController: Drives one pair through create → start → readiness →
        validator → exit code → teardown, returning one ``RunVerdict``.
    ReadinessProber: Polls a container until it listens, exits or times out.
    ContainerRuntime: Protocol over the container daemon;
        ``DockerCliRuntime`` is the subprocess-based implementation.
    LogCollector: ``{run_id}/validator/{validator}/{client}/`` log tree plus
        JSON and HTML summaries.

Related Modules:
    - :mod:`pairbench.matrix.container` — runtime protocol and docker CLI runtime
    - :mod:`pairbench.matrix.readiness` — readiness prober
    - :mod:`pairbench.matrix.controller` — pair lifecycle
    - :mod:`pairbench.matrix.workflow` — sweep orchestration
    - :mod:`pairbench.matrix.results` — verdicts, matrix, sweep summary
    - :mod:`pairbench.cli.matrix` — CLI commands (``pairbench validate``)
"""

from pairbench.matrix.config import SweepConfig, parse_overrides
from pairbench.matrix.container import (
    ContainerHandle,
    ContainerRuntime,
    ContainerState,
    DockerCliRuntime,
    LogStream,
)
from pairbench.matrix.controller import PairRunController, PairSettings
from pairbench.matrix.images import ImageResolver, LocalImageResolver, StaticImageResolver
from pairbench.matrix.log_collector import LogCollector
from pairbench.matrix.readiness import ReadinessProber
from pairbench.matrix.results import (
    FailureDetail,
    FailureKind,
    IdentityHandoff,
    OverallStatus,
    ReadinessKind,
    ReadinessOutcome,
    ResultMatrix,
    RunVerdict,
    SweepResult,
)
from pairbench.matrix.workflow import MatrixOrchestrator, validate_clients

__all__ = [
    # Config
    "SweepConfig",
    "parse_overrides",
    # Runtime
    "ContainerHandle",
    "ContainerRuntime",
    "ContainerState",
    "DockerCliRuntime",
    "LogStream",
    # Images
    "ImageResolver",
    "LocalImageResolver",
    "StaticImageResolver",
    # Execution
    "MatrixOrchestrator",
    "PairRunController",
    "PairSettings",
    "ReadinessProber",
    "validate_clients",
    # Results
    "FailureDetail",
    "FailureKind",
    "IdentityHandoff",
    "OverallStatus",
    "ReadinessKind",
    "ReadinessOutcome",
    "ResultMatrix",
    "RunVerdict",
    "SweepResult",
    # Output
    "LogCollector",
]
