"""Readiness detection for client containers.

Clients give no push signal when their service comes up, so readiness is
observed by polling. Each tick first asks the daemon whether the container
is still running and only then tries to dial the service port. Checking
liveness first means a dead container is reported as exited instead of
being dialled forever through a stale network address.

The poll interval is fixed (100 ms by default). Probing is local to the
orchestrator host, so no backoff is applied.
"""

from __future__ import annotations

import socket
import time
from collections.abc import Callable

from pairbench.core.logging import get_logger
from pairbench.core.timeout import Deadline
from pairbench.matrix.container import ContainerHandle, ContainerRuntime
from pairbench.matrix.results import ReadinessKind, ReadinessOutcome

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 0.1


def dial_tcp(host: str, port: int, timeout: float) -> None:
    """Open and immediately close a TCP connection; raises OSError on failure."""
    conn = socket.create_connection((host, port), timeout=timeout)
    conn.close()


class ReadinessProber:
    """Waits until a container accepts TCP connections or dies.

    Parameters
    ----------
    runtime
        Runtime used to inspect the container on every tick.
    poll_interval
        Seconds to sleep between ticks.
    timeout
        Overall limit in seconds; ``None`` polls until an outcome is reached.
    connect_timeout
        Limit for a single connection attempt.
    dial, sleep
        Injection points for the connect attempt and the inter-tick pause.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float | None = None,
        connect_timeout: float = 1.0,
        dial: Callable[[str, int, float], None] = dial_tcp,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runtime = runtime
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._dial = dial
        self._sleep = sleep

    def probe(self, handle: ContainerHandle, port: int) -> ReadinessOutcome:
        """Poll ``handle`` until ready, exited, failed or timed out."""
        deadline = Deadline.start(self.timeout, operation="readiness")
        attempts = 0

        while True:
            attempts += 1
            try:
                state = self.runtime.inspect(handle)
            except Exception as exc:
                return self._outcome(
                    ReadinessKind.PROBE_ERROR, deadline, f"failed to inspect container: {exc}"
                )

            if not state.running:
                return self._outcome(
                    ReadinessKind.PROCESS_EXITED,
                    deadline,
                    f"terminated unexpectedly (exit code {state.exit_code})",
                )

            if not state.ip_address:
                return self._outcome(
                    ReadinessKind.PROBE_ERROR, deadline, "container has no network address"
                )

            try:
                self._dial(state.ip_address, port, self.connect_timeout)
            except OSError as exc:
                logger.debug("readiness.dial_failed", id=handle.short_id, attempt=attempts, error=str(exc))
            else:
                logger.debug(
                    "readiness.online",
                    id=handle.short_id,
                    attempts=attempts,
                    seconds=round(deadline.elapsed, 3),
                )
                return self._outcome(
                    ReadinessKind.READY, deadline, "accepting connections", state.ip_address
                )

            if deadline.is_expired():
                return self._outcome(
                    ReadinessKind.TIMEOUT,
                    deadline,
                    f"port {port} not accepting connections after {self.timeout}s",
                )

            self._sleep(self.poll_interval)

    @staticmethod
    def _outcome(
        kind: ReadinessKind,
        deadline: Deadline,
        message: str,
        ip_address: str | None = None,
    ) -> ReadinessOutcome:
        return ReadinessOutcome(
            kind=kind,
            message=message,
            elapsed_seconds=deadline.elapsed,
            ip_address=ip_address,
        )
