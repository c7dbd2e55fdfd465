"""Container runtime adapter for pairbench.

The pair run controller talks to containers exclusively through the
:class:`ContainerRuntime` protocol. :class:`DockerCliRuntime` implements it
on top of the ``docker`` CLI (subprocess); tests use
:class:`~pairbench.matrix.mock_runtime.ScriptedRuntime`.

Key Concepts:
    ContainerRuntime: Protocol — ``create``, ``start``, ``inspect``,
        ``remove``, ``copy_file``, ``create_network``, ``remove_network``.
    ContainerHandle: Identifier of one container owned by one pair run,
        with a derived ``short_id`` for log correlation.
    ContainerState: Snapshot returned by ``inspect`` (running, exit code,
        network address).
    LogStream: Returned by ``start``. Streams container output into a log
        file until closed; ``wait()`` blocks until the container exits.

Architecture Decisions:
    - subprocess, not docker-py: works with any runtime exposing a
      ``docker`` CLI (Docker, Podman, Colima).
    - Label-based tracking: every container gets ``pairbench.*`` labels so
      ``cleanup_orphans()`` can find leftovers of crashed sweeps.
    - Network-per-sweep: clients and validators share a bridge network so
      validators can reach the client address they are handed.

Tags:
    container, docker, lifecycle, subprocess, network, cleanup
"""

from __future__ import annotations

import json
import shutil
import subprocess
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path, PurePosixPath
from typing import IO, Any, Protocol, runtime_checkable

from pairbench.core.errors import (
    ContainerFileNotFoundError,
    ContainerRuntimeError,
    DockerNotFoundError,
)
from pairbench.core.logging import get_logger
from pairbench.core.timeout import TimeoutExpired

logger = get_logger(__name__)

SHORT_ID_LENGTH = 8

# Sentinel: fall back to the runtime's command_timeout
_DEFAULT_TIMEOUT: Any = object()


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContainerHandle:
    """A container created for one pair run."""

    container_id: str
    role: str
    image: str
    ip_address: str | None = None

    @property
    def short_id(self) -> str:
        return self.container_id[:SHORT_ID_LENGTH]

    def with_address(self, ip_address: str) -> ContainerHandle:
        return replace(self, ip_address=ip_address)


@dataclass(frozen=True)
class ContainerState:
    """Runtime state reported by ``inspect``."""

    running: bool
    exit_code: int = 0
    ip_address: str = ""
    status: str = ""


@runtime_checkable
class LogStream(Protocol):
    """Output stream of a started container."""

    def wait(self, timeout: float | None = None) -> None:
        """Block until the container process terminates."""
        ...

    def close(self) -> None:
        """Stop streaming and release the log file."""
        ...

    def __enter__(self) -> LogStream: ...

    def __exit__(self, *exc: object) -> None: ...


@runtime_checkable
class ContainerRuntime(Protocol):
    """Operations the pair run controller needs from a container daemon."""

    def create(
        self,
        image: str,
        *,
        role: str,
        env: Mapping[str, str] | None = None,
        labels: Mapping[str, str] | None = None,
        network: str | None = None,
    ) -> ContainerHandle: ...

    def start(self, handle: ContainerHandle, log_path: Path) -> LogStream: ...

    def inspect(self, handle: ContainerHandle) -> ContainerState: ...

    def remove(self, handle: ContainerHandle, force: bool = True) -> None: ...

    def copy_file(self, src: ContainerHandle, dst: ContainerHandle, path: str) -> None: ...

    def create_network(self, name: str) -> str: ...

    def remove_network(self, name: str) -> None: ...


# ---------------------------------------------------------------------------
# Docker CLI implementation
# ---------------------------------------------------------------------------


class DockerLogStream:
    """Follows ``docker logs`` of one container into a file."""

    def __init__(
        self,
        runtime: DockerCliRuntime,
        handle: ContainerHandle,
        process: subprocess.Popen[bytes],
        log_file: IO[bytes],
    ) -> None:
        self._runtime = runtime
        self._handle = handle
        self._process = process
        self._log_file = log_file
        self._closed = False

    def wait(self, timeout: float | None = None) -> None:
        """Block until the container exits (``docker wait``)."""
        self._runtime._run_docker(
            ["wait", self._handle.container_id],
            timeout=timeout,
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            # The follower exits on its own once the container has stopped.
            self._process.wait(timeout=2)
        except subprocess.TimeoutExpired:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                self._process.wait()
        finally:
            self._log_file.close()

    def __enter__(self) -> DockerLogStream:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class DockerCliRuntime:
    """Container runtime backed by the ``docker`` CLI.

    Docker must be installed and accessible on the system PATH.

    Parameters
    ----------
    label_prefix
        Label prefix for container identification (e.g., ``pairbench``).
    network_prefix
        Prefix for sweep network names.
    command_timeout
        Timeout in seconds for request/response CLI calls.

    Example::

        runtime = DockerCliRuntime()
        handle = runtime.create("clients/geth:latest", role="client")
        with runtime.start(handle, Path("client.log")) as stream:
            ...
        runtime.remove(handle)
    """

    def __init__(
        self,
        label_prefix: str = "pairbench",
        network_prefix: str = "pairbench",
        command_timeout: int = 60,
    ) -> None:
        self.label_prefix = label_prefix
        self.network_prefix = network_prefix
        self.command_timeout = command_timeout
        self._docker_cmd = self._find_docker()

    # ------------------------------------------------------------------
    # Docker CLI discovery
    # ------------------------------------------------------------------

    @staticmethod
    def _find_docker() -> str:
        """Find the docker CLI binary."""
        docker = shutil.which("docker")
        if docker is None:
            raise DockerNotFoundError(
                "Docker CLI not found on PATH. Install Docker or add it to PATH.\n"
                "  - Linux:   https://docs.docker.com/engine/install/\n"
                "  - macOS:   https://docs.docker.com/desktop/install/mac-install/"
            )
        return docker

    @staticmethod
    def is_docker_available() -> bool:
        """Check if Docker is installed and the daemon is running."""
        docker = shutil.which("docker")
        if docker is None:
            return False
        try:
            result = subprocess.run(
                [docker, "info"],
                capture_output=True,
                timeout=10,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    # ------------------------------------------------------------------
    # Container lifecycle
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
        cmd = [
            "create",
            "--label", f"{self.label_prefix}.managed=true",
            "--label", f"{self.label_prefix}.role={role}",
        ]
        for key, value in (labels or {}).items():
            cmd.extend(["--label", f"{self.label_prefix}.{key}={value}"])
        if network:
            cmd.extend(["--network", network])
        for key, value in (env or {}).items():
            cmd.extend(["--env", f"{key}={value}"])
        cmd.append(image)

        result = self._run_docker(cmd)
        container_id = result.stdout.strip()
        if not container_id:
            raise ContainerRuntimeError(
                f"docker create returned no container id for {image}"
            ).with_context(image=image)
        logger.debug("container.created", id=container_id[:SHORT_ID_LENGTH], image=image, role=role)
        return ContainerHandle(container_id=container_id, role=role, image=image)

    def start(self, handle: ContainerHandle, log_path: Path) -> DockerLogStream:
        self._run_docker(["start", handle.container_id])

        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = log_path.open("wb")
        try:
            process = subprocess.Popen(
                [self._docker_cmd, "logs", "--follow", handle.container_id],
                stdout=log_file,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            log_file.close()
            raise ContainerRuntimeError(
                f"Failed to attach to container logs: {exc}", cause=exc
            ).with_context(container_id=handle.short_id) from exc

        logger.debug("container.started", id=handle.short_id, log=str(log_path))
        return DockerLogStream(self, handle, process, log_file)

    def inspect(self, handle: ContainerHandle) -> ContainerState:
        result = self._run_docker(["inspect", "--format", "{{json .}}", handle.container_id])
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ContainerRuntimeError(
                f"Unreadable inspect output for {handle.short_id}", cause=exc
            ) from exc

        state = data.get("State") or {}
        return ContainerState(
            running=bool(state.get("Running")),
            exit_code=int(state.get("ExitCode") or 0),
            ip_address=_container_address(data.get("NetworkSettings") or {}),
            status=state.get("Status", ""),
        )

    def remove(self, handle: ContainerHandle, force: bool = True) -> None:
        cmd = ["rm"]
        if force:
            cmd.append("--force")
        cmd.append(handle.container_id)
        self._run_docker(cmd)
        logger.debug("container.removed", id=handle.short_id)

    def copy_file(self, src: ContainerHandle, dst: ContainerHandle, path: str) -> None:
        """Copy ``path`` from ``src`` to the same path inside ``dst``."""
        with tempfile.TemporaryDirectory(prefix="pairbench-cp-") as tmp:
            local = Path(tmp) / PurePosixPath(path).name
            result = self._run_docker(
                ["cp", f"{src.container_id}:{path}", str(local)],
                check=False,
            )
            if result.returncode != 0:
                stderr = result.stderr.strip()
                if _is_missing_path(stderr):
                    raise ContainerFileNotFoundError(
                        f"{path} not found in container {src.short_id}"
                    ).with_context(container_id=src.short_id)
                raise ContainerRuntimeError(
                    f"Failed to copy {path} from {src.short_id}: {stderr}"
                ).with_context(container_id=src.short_id)
            self._run_docker(["cp", str(local), f"{dst.container_id}:{path}"])

    # ------------------------------------------------------------------
    # Network management
    # ------------------------------------------------------------------

    def create_network(self, name: str) -> str:
        self._run_docker(
            [
                "network", "create", "--driver", "bridge",
                "--label", f"{self.label_prefix}.managed=true",
                name,
            ],
        )
        logger.info("network.created", network=name)
        return name

    def remove_network(self, name: str) -> None:
        self._run_docker(["network", "rm", name])
        logger.debug("network.removed", network=name)

    # ------------------------------------------------------------------
    # Discovery and orphan cleanup
    # ------------------------------------------------------------------

    def list_images(self, repository_prefix: str) -> list[dict[str, Any]]:
        """List local images whose repository starts with ``repository_prefix``."""
        result = self._run_docker(["image", "ls", "--format", "{{json .}}"])
        images = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("image.unparseable", line=line)
                continue
            if entry.get("Repository", "").startswith(repository_prefix):
                images.append(entry)
        return images

    def list_containers(self) -> list[dict[str, Any]]:
        """List every container carrying the managed label."""
        cmd = [
            "ps", "--all",
            "--filter", f"label={self.label_prefix}.managed=true",
            "--format", "{{json .}}",
        ]
        result = self._run_docker(cmd, check=False)
        containers = []
        for line in result.stdout.strip().splitlines():
            if line.strip():
                try:
                    containers.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.debug("container.unparseable", line=line)
        return containers

    def cleanup_orphans(self) -> int:
        """Remove all pairbench containers and networks.

        Returns the number of containers removed.
        """
        removed = 0
        for c in self.list_containers():
            result = self._run_docker(["rm", "--force", c.get("ID", "")], check=False)
            if result.returncode == 0:
                removed += 1
            else:
                logger.warning("cleanup.failed", container=c.get("Names"), error=result.stderr.strip())

        result = self._run_docker(
            ["network", "ls", "--filter", f"label={self.label_prefix}.managed=true", "--format", "{{.Name}}"],
            check=False,
        )
        for network in result.stdout.strip().splitlines():
            if network.strip():
                self._run_docker(["network", "rm", network.strip()], check=False)

        if removed:
            logger.info("cleanup.complete", containers_removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run_docker(
        self,
        args: list[str],
        check: bool = True,
        timeout: float | None = _DEFAULT_TIMEOUT,
    ) -> subprocess.CompletedProcess[str]:
        """Run a docker CLI command.

        ``timeout=None`` waits forever; the default is ``command_timeout``.
        """
        limit = self.command_timeout if timeout is _DEFAULT_TIMEOUT else timeout
        cmd = [self._docker_cmd, *args]
        logger.debug("docker.exec", cmd=" ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=limit,
            )
        except subprocess.TimeoutExpired as exc:
            raise TimeoutExpired(
                timeout=float(limit or 0),
                operation=f"docker {args[0]}",
            ) from exc
        except OSError as exc:
            raise ContainerRuntimeError(f"Failed to run docker: {exc}", cause=exc) from exc

        if check and result.returncode != 0:
            raise ContainerRuntimeError(
                f"Docker command failed (exit {result.returncode}): "
                f"{' '.join(args)}\n{result.stderr.strip()}"
            )
        return result


def _container_address(network_settings: dict[str, Any]) -> str:
    """Address on the default bridge, else the first user-defined network."""
    ip = network_settings.get("IPAddress") or ""
    if ip:
        return ip
    for network in (network_settings.get("Networks") or {}).values():
        if network and network.get("IPAddress"):
            return network["IPAddress"]
    return ""


def _is_missing_path(stderr: str) -> bool:
    lowered = stderr.lower()
    return "could not find the file" in lowered or "no such file" in lowered
