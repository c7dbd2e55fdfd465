"""Scripted container runtime: a test double for pair lifecycles.

Implements the :class:`~pairbench.matrix.container.ContainerRuntime`
protocol in memory, so the run controller and the matrix orchestrator can
be exercised without a container daemon. Behaviour is scripted per image
with :class:`ImageScript`:

    ScriptedRuntime
    ├── readiness        (listening, ready_after, exits_after, has_address)
    ├── validator exit   (exit_code, hangs)
    ├── identity script  (has_identity)
    └── failure injection (fail_on: create/start/inspect/copy/wait/remove)

The runtime also records what happened (``events``, ``containers``,
``networks``) so tests can assert on teardown order and on the
environment handed to validators.

Example::

    from pairbench.matrix.mock_runtime import ImageScript, ScriptedRuntime

    runtime = ScriptedRuntime({
        "clients/a": ImageScript(),
        "clients/b": ImageScript(exits_after=1, exit_code=2),
        "validators/v1": ImageScript(exit_code=0),
    })
    prober = ReadinessProber(runtime, dial=runtime.dial, sleep=lambda _: None)

See Also:
    pairbench.matrix.container — protocol definitions and the docker CLI runtime
"""

from __future__ import annotations

import itertools
import threading
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from pairbench.core.errors import ContainerFileNotFoundError, ContainerRuntimeError
from pairbench.core.timeout import TimeoutExpired
from pairbench.matrix.container import ContainerHandle, ContainerState


@dataclass
class ImageScript:
    """Scripted behaviour of every container created from one image.

    Attributes:
        listening: Whether the service port ever accepts connections.
        ready_after: Refused dials before the port starts accepting.
        exits_after: Inspections after which the container reports stopped
            (``None`` keeps it running until its wait returns).
        exit_code: Exit code reported once the container has stopped.
        has_address: Whether the container gets a network address.
        has_identity: Whether the identity script exists in the image.
        hangs: ``wait()`` never returns; raises on its deadline instead.
        fail_on: Operations that raise ``ContainerRuntimeError``.
        port: Port the scripted service listens on.
    """

    listening: bool = True
    ready_after: int = 0
    exits_after: int | None = None
    exit_code: int = 0
    has_address: bool = True
    has_identity: bool = True
    hangs: bool = False
    fail_on: frozenset[str] = frozenset()
    port: int = 8545


@dataclass
class _Container:
    handle: ContainerHandle
    script: ImageScript
    env: dict[str, str]
    labels: dict[str, str]
    network: str | None
    ip_address: str = ""
    started: bool = False
    exited: bool = False
    removed: bool = False
    inspections: int = 0
    dials: int = 0
    files: set[str] = field(default_factory=set)


class ScriptedLogStream:
    """Log stream of a scripted container; writes one line per container."""

    def __init__(self, runtime: ScriptedRuntime, container: _Container, log_path: Path) -> None:
        self._runtime = runtime
        self._container = container
        self.log_path = log_path
        self.closed = False
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text(f"scripted output of {container.handle.image}\n")

    def wait(self, timeout: float | None = None) -> None:
        container = self._container
        self._runtime._maybe_fail("wait", container.script, container.handle)
        if container.script.hangs:
            raise TimeoutExpired(
                timeout=timeout or 0.0,
                elapsed=timeout,
                operation=f"wait {container.handle.short_id}",
            )
        container.exited = True
        self._runtime._event("wait", container.handle)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._runtime._event("close", self._container.handle)

    def __enter__(self) -> ScriptedLogStream:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class ScriptedRuntime:
    """In-memory ``ContainerRuntime`` driven by per-image scripts.

    Parameters
    ----------
    scripts
        Mapping of image name to :class:`ImageScript`. Images without a
        script get the default (healthy client, validator exiting 0).
    """

    def __init__(self, scripts: Mapping[str, ImageScript] | None = None) -> None:
        self.scripts: dict[str, ImageScript] = dict(scripts or {})
        self.containers: dict[str, _Container] = {}
        self.events: list[tuple[str, str, str]] = []
        self.networks: list[str] = []
        self.removed_networks: list[str] = []
        self._addresses = itertools.count(2)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # ContainerRuntime
    # ------------------------------------------------------------------

    def create(
        self,
        image: str,
        *,
        role: str,
        env: Mapping[str, str] | None = None,
        labels: Mapping[str, str] | None = None,
        network: str | None = None,
    ) -> ContainerHandle:
        script = self.scripts.get(image, ImageScript())
        if "create" in script.fail_on:
            raise ContainerRuntimeError(f"scripted create failure for {image}").with_context(image=image)

        handle = ContainerHandle(container_id=uuid.uuid4().hex * 2, role=role, image=image)
        container = _Container(
            handle=handle,
            script=script,
            env=dict(env or {}),
            labels=dict(labels or {}),
            network=network,
        )
        with self._lock:
            if script.has_address:
                n = next(self._addresses)
                container.ip_address = f"10.0.{n // 250}.{n % 250}"
            self.containers[handle.container_id] = container
        self._event("create", handle)
        return handle

    def start(self, handle: ContainerHandle, log_path: Path) -> ScriptedLogStream:
        container = self._get(handle)
        self._maybe_fail("start", container.script, handle)
        container.started = True
        self._event("start", handle)
        return ScriptedLogStream(self, container, log_path)

    def inspect(self, handle: ContainerHandle) -> ContainerState:
        container = self._get(handle)
        self._maybe_fail("inspect", container.script, handle)
        container.inspections += 1

        exits_after = container.script.exits_after
        if exits_after is not None and container.inspections > exits_after:
            container.exited = True

        running = container.started and not container.exited
        return ContainerState(
            running=running,
            exit_code=container.script.exit_code if container.exited else 0,
            ip_address=container.ip_address if running else "",
            status="running" if running else "exited",
        )

    def remove(self, handle: ContainerHandle, force: bool = True) -> None:
        container = self.containers.get(handle.container_id)
        if container is None or container.removed:
            raise ContainerRuntimeError(f"No such container: {handle.short_id}")
        self._maybe_fail("remove", container.script, handle)
        container.removed = True
        self._event("remove", handle)

    def copy_file(self, src: ContainerHandle, dst: ContainerHandle, path: str) -> None:
        source = self._get(src)
        self._maybe_fail("copy", source.script, src)
        if not source.script.has_identity:
            raise ContainerFileNotFoundError(f"{path} not found in container {src.short_id}")
        self._get(dst).files.add(path)
        self._event("copy", dst)

    def create_network(self, name: str) -> str:
        self.networks.append(name)
        return name

    def remove_network(self, name: str) -> None:
        self.removed_networks.append(name)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def dial(self, host: str, port: int, timeout: float) -> None:
        """Dial function for ``ReadinessProber``; raises ConnectionRefusedError."""
        container = self._by_address(host)
        if container is None or container.exited or port != container.script.port:
            raise ConnectionRefusedError(f"connection refused: {host}:{port}")
        container.dials += 1
        if not container.script.listening or container.dials <= container.script.ready_after:
            raise ConnectionRefusedError(f"connection refused: {host}:{port}")

    # ------------------------------------------------------------------
    # Introspection for tests
    # ------------------------------------------------------------------

    def created(self, role: str | None = None) -> list[_Container]:
        return [c for c in self.containers.values() if role is None or c.handle.role == role]

    @property
    def removed(self) -> list[str]:
        return [cid for name, _, cid in self.events if name == "remove"]

    def leaked(self) -> list[str]:
        """Containers that were created but never removed."""
        return [cid for cid, c in self.containers.items() if not c.removed]

    def events_for(self, names: Iterable[str]) -> list[tuple[str, str, str]]:
        wanted = set(names)
        return [e for e in self.events if e[0] in wanted]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _get(self, handle: ContainerHandle) -> _Container:
        container = self.containers.get(handle.container_id)
        if container is None or container.removed:
            raise ContainerRuntimeError(f"No such container: {handle.short_id}")
        return container

    def _by_address(self, host: str) -> _Container | None:
        with self._lock:
            for container in self.containers.values():
                if container.ip_address == host and not container.removed:
                    return container
        return None

    @staticmethod
    def _maybe_fail(operation: str, script: ImageScript, handle: ContainerHandle) -> None:
        if operation in script.fail_on:
            raise ContainerRuntimeError(
                f"scripted {operation} failure for {handle.image}"
            ).with_context(container_id=handle.short_id, image=handle.image)

    def _event(self, name: str, handle: ContainerHandle) -> None:
        with self._lock:
            self.events.append((name, handle.role, handle.container_id))


__all__ = ["ImageScript", "ScriptedLogStream", "ScriptedRuntime"]
