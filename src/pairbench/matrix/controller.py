"""Pairwise run controller: one client, one validator, one verdict.

Drives a single (client image, validator image) pair through its lifecycle::

    create client → start client → resolve address → wait for readiness
        → create validator → hand off identity script → start validator
        → wait for validator exit → read exit code → verdict → teardown

Any failing step short-circuits to teardown. Every container is registered
on a :class:`contextlib.ExitStack` as soon as it exists, so teardown runs
on every path and in reverse order of creation. A container is removed
before its log stream is closed, so the log follower ends with the
container instead of being killed. Teardown failures are logged and never touch the verdict,
which is composed before teardown starts.

``run()`` never raises: failures become ``RunVerdict.error``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from pairbench.core.errors import ContainerFileNotFoundError, categorize_error
from pairbench.core.logging import LogContext, get_logger
from pairbench.matrix.container import ContainerHandle, ContainerRuntime, LogStream
from pairbench.matrix.readiness import ReadinessProber
from pairbench.matrix.results import (
    FailureDetail,
    FailureKind,
    IdentityHandoff,
    ReadinessKind,
    RunVerdict,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Environment handed to validator containers. Validator images read these
# names, so they must not change.
ENV_CLIENT_IP = "HIVE_CLIENT_IP"
ENV_CLIENT_ID = "HIVE_CLIENT_ID"
ENV_HOST_ALIAS = "HIVE_DOCKER_HOST_ALIAS"

DEFAULT_CLIENT_PORT = 8545
DEFAULT_HOST_ALIAS = "on-docker-host"
DEFAULT_IDENTITY_SCRIPT = "/enode.sh"

_READINESS_FAILURES = {
    ReadinessKind.PROCESS_EXITED: FailureKind.TERMINATED,
    ReadinessKind.PROBE_ERROR: FailureKind.PROBE,
    ReadinessKind.TIMEOUT: FailureKind.TIMEOUT,
}


@dataclass(frozen=True)
class PairSettings:
    """Per-pair knobs shared by every pair of a sweep."""

    client_port: int = DEFAULT_CLIENT_PORT
    host_alias: str = DEFAULT_HOST_ALIAS
    identity_script: str | None = DEFAULT_IDENTITY_SCRIPT
    client_env: Mapping[str, str] = field(default_factory=dict)
    validator_timeout: float | None = None
    network: str | None = None
    run_id: str | None = None


class _StepFailed(Exception):
    """Internal: a lifecycle step failed; carries the verdict's error."""

    def __init__(self, detail: FailureDetail) -> None:
        super().__init__(str(detail))
        self.detail = detail


@dataclass
class _PairState:
    """Mutable bookkeeping while a pair is in flight."""

    client: str
    validator: str
    start: datetime = field(default_factory=lambda: datetime.now(UTC))
    error: FailureDetail | None = None
    exit_code: int | None = None
    identity: IdentityHandoff | None = None
    client_id: str | None = None
    validator_id: str | None = None
    streams: dict[str, LogStream] = field(default_factory=dict)

    def to_verdict(self) -> RunVerdict:
        return RunVerdict(
            client=self.client,
            validator=self.validator,
            start=self.start,
            end=max(datetime.now(UTC), self.start),
            success=self.error is None and self.exit_code == 0,
            error=self.error,
            exit_code=self.exit_code,
            identity=self.identity,
            client_id=self.client_id,
            validator_id=self.validator_id,
        )


class PairRunController:
    """Runs one client against one validator and returns its verdict.

    Parameters
    ----------
    runtime
        Container runtime used for every container operation.
    prober
        Readiness prober for the client's service port.
    settings
        Port, host alias, identity script path and deadlines.

    Example::

        controller = PairRunController(runtime, ReadinessProber(runtime))
        verdict = controller.run(
            "geth", "clients/geth:latest",
            "rpc", "validators/rpc:latest",
            log_dir=Path("logs/validator/rpc/geth"),
        )
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        prober: ReadinessProber | None = None,
        settings: PairSettings | None = None,
    ) -> None:
        self.runtime = runtime
        self.prober = prober or ReadinessProber(runtime)
        self.settings = settings or PairSettings()

    def run(
        self,
        client: str,
        client_image: str,
        validator: str,
        validator_image: str,
        log_dir: Path,
    ) -> RunVerdict:
        state = _PairState(client=client, validator=validator)

        with LogContext(client=client, validator=validator):
            logger.info("pair.start")
            with ExitStack() as teardown:
                try:
                    self._execute(teardown, state, client_image, validator_image, log_dir)
                except _StepFailed as failure:
                    state.error = failure.detail
                except Exception as exc:
                    logger.exception("pair.internal_error")
                    state.error = FailureDetail(
                        kind=FailureKind.INTERNAL,
                        message=str(exc) or type(exc).__name__,
                    )
                verdict = state.to_verdict()

        return verdict

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _execute(
        self,
        teardown: ExitStack,
        state: _PairState,
        client_image: str,
        validator_image: str,
        log_dir: Path,
    ) -> None:
        # Client: create, start, resolve address
        client = self._create(teardown, state, client_image, "client", dict(self.settings.client_env))
        state.client_id = client.short_id
        self._start(state, client, log_dir / "client.log")

        client_state = self._call(FailureKind.INSPECT, "client", self.runtime.inspect, client)
        client = client.with_address(client_state.ip_address)

        # Wait for the service port to open or the container to die
        outcome = self.prober.probe(client, self.settings.client_port)
        if not outcome.ready:
            logger.error("client.not_ready", id=client.short_id, outcome=outcome.kind.value, reason=outcome.message)
            raise _StepFailed(
                FailureDetail(
                    kind=_READINESS_FAILURES[outcome.kind],
                    message=outcome.message,
                    role="client",
                )
            )
        logger.debug("client.online", id=client.short_id, seconds=round(outcome.elapsed_seconds, 3))

        # Validator: create with the client's coordinates, hand off identity, run
        validator = self._create(
            teardown,
            state,
            validator_image,
            "validator",
            {
                ENV_CLIENT_IP: client.ip_address or "",
                ENV_CLIENT_ID: client.container_id,
                ENV_HOST_ALIAS: self.settings.host_alias,
            },
        )
        state.validator_id = validator.short_id
        state.identity = self._hand_off_identity(client, validator)

        stream = self._start(state, validator, log_dir / "validator.log")
        self._wait(stream, validator)

        final = self._call(FailureKind.INSPECT, "validator", self.runtime.inspect, validator)
        state.exit_code = final.exit_code
        logger.debug("validator.exited", id=validator.short_id, exit_code=final.exit_code)

    def _create(
        self,
        teardown: ExitStack,
        state: _PairState,
        image: str,
        role: str,
        env: dict[str, str],
    ) -> ContainerHandle:
        logger.debug(f"{role}.creating", image=image)
        labels = {"run_id": self.settings.run_id} if self.settings.run_id else {}
        handle = self._call(
            FailureKind.CREATE,
            role,
            self.runtime.create,
            image,
            role=role,
            env=env,
            labels=labels,
            network=self.settings.network,
        )
        teardown.callback(self._release, handle, state.streams)
        logger.debug(f"{role}.created", id=handle.short_id)
        return handle

    def _start(self, state: _PairState, handle: ContainerHandle, log_path: Path) -> LogStream:
        stream = self._call(FailureKind.START, handle.role, self.runtime.start, handle, log_path)
        state.streams[handle.container_id] = stream
        return stream

    def _wait(self, stream: LogStream, handle: ContainerHandle) -> None:
        try:
            stream.wait(timeout=self.settings.validator_timeout)
        except TimeoutError as exc:
            logger.error("validator.timeout", id=handle.short_id, error=str(exc))
            raise _StepFailed(
                FailureDetail(kind=FailureKind.TIMEOUT, message=str(exc), role=handle.role)
            ) from exc
        except Exception as exc:
            logger.error("validator.wait_failed", id=handle.short_id, error=str(exc))
            raise _StepFailed(
                FailureDetail(kind=FailureKind.WAIT, message=str(exc), role=handle.role)
            ) from exc

    def _hand_off_identity(self, client: ContainerHandle, validator: ContainerHandle) -> IdentityHandoff:
        path = self.settings.identity_script
        if not path:
            return IdentityHandoff.DISABLED
        try:
            self.runtime.copy_file(client, validator, path)
        except ContainerFileNotFoundError as exc:
            logger.warning(
                "identity.missing",
                id=validator.short_id,
                path=path,
                warning=(
                    f"No {path} provided. Discovery tests will not be able to "
                    "identify their target node id."
                ),
                error=str(exc),
            )
            return IdentityHandoff.ABSENT
        except Exception as exc:
            logger.warning("identity.copy_failed", id=validator.short_id, path=path, error=str(exc))
            return IdentityHandoff.ERROR
        return IdentityHandoff.PRESENT

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _release(self, handle: ContainerHandle, streams: dict[str, LogStream]) -> None:
        """Remove the container, then close its log stream (if it was started)."""
        self._remove(handle)
        stream = streams.pop(handle.container_id, None)
        if stream is not None:
            self._close_stream(stream, handle)

    def _remove(self, handle: ContainerHandle) -> None:
        logger.debug(f"{handle.role}.deleting", id=handle.short_id)
        try:
            self.runtime.remove(handle, force=True)
        except Exception as exc:
            logger.error("teardown.failed", role=handle.role, id=handle.short_id, error=str(exc))

    @staticmethod
    def _close_stream(stream: LogStream, handle: ContainerHandle) -> None:
        try:
            stream.close()
        except Exception as exc:
            logger.warning("logstream.close_failed", role=handle.role, id=handle.short_id, error=str(exc))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _call(
        kind: FailureKind, step_role: str, func: Callable[..., T], /, *args: Any, **kwargs: Any
    ) -> T:
        """Run one runtime call, converting its failure into ``_StepFailed``.

        ``kind`` and ``step_role`` are positional-only so that ``kwargs`` may
        carry the runtime's own ``role`` argument.
        """
        try:
            return func(*args, **kwargs)
        except TimeoutError as exc:
            logger.error(f"{step_role}.timeout", step=kind.value, error=str(exc))
            raise _StepFailed(
                FailureDetail(kind=FailureKind.TIMEOUT, message=str(exc), role=step_role)
            ) from exc
        except Exception as exc:
            logger.error(
                f"{step_role}.{kind.value}_failed",
                category=categorize_error(exc).value,
                error=str(exc),
            )
            raise _StepFailed(FailureDetail(kind=kind, message=str(exc), role=step_role)) from exc
