"""
CLI: ``pairbench validate`` and friends — sweep commands.

Usage::

    pairbench validate                                  # every client × every validator
    pairbench validate --client geth --validator rpc    # regex selections
    pairbench validate --override HIVE_FORK_HOMESTEAD=0 --parallel
    pairbench validate --readiness-timeout 60 --json

    pairbench images                                    # list resolvable images
    pairbench clean                                     # remove leftover containers

Exit codes of ``validate``: 0 when every pair passed, 1 when any pair
failed, 2 when the sweep could not run (no matching images, no docker).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

EXIT_FAILED = 1
EXIT_ABORTED = 2


# ── Validate ─────────────────────────────────────────────────────────────


def validate(
    client: str | None = typer.Option(
        None, "--client", "-c", help="Regex selecting clients (default: all)."
    ),
    validator: str | None = typer.Option(
        None, "--validator", "-t", help="Regex selecting validators (default: all)."
    ),
    override: list[str] = typer.Option(
        [], "--override", "-e", help="KEY=VALUE added to client environments. Repeatable."
    ),
    parallel: bool = typer.Option(False, "--parallel", "-p", help="Run pairs concurrently."),
    max_parallel: int | None = typer.Option(None, "--max-parallel", help="Max concurrent pairs."),
    readiness_timeout: float | None = typer.Option(
        None, "--readiness-timeout", help="Seconds a client may take to start listening."
    ),
    validator_timeout: float | None = typer.Option(
        None, "--validator-timeout", help="Seconds a validator may run."
    ),
    network: str | None = typer.Option(None, "--network", help="Existing Docker network to use."),
    output_dir: str | None = typer.Option(None, "--output", "-o", help="Output directory."),
    output_format: str | None = typer.Option(
        None, "--format", "-f", help="Summary format: json, html, all."
    ),
    json_out: bool = typer.Option(False, "--json", help="Output results as JSON."),
) -> None:
    """Run every selected validator against every selected client."""
    from pydantic import ValidationError

    from pairbench.core.errors import PairbenchError
    from pairbench.matrix.config import SweepConfig, parse_overrides
    from pairbench.matrix.results import OverallStatus
    from pairbench.matrix.workflow import MatrixOrchestrator

    try:
        overrides = parse_overrides(override)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--override") from e

    options: dict[str, Any] = {
        "client_pattern": client,
        "validator_pattern": validator,
        "parallel": parallel or None,
        "max_parallel": max_parallel,
        "readiness_timeout_seconds": readiness_timeout,
        "validator_timeout_seconds": validator_timeout,
        "network": network,
        "output_dir": Path(output_dir) if output_dir else None,
        "output_format": output_format,
    }
    if overrides:
        options["overrides"] = overrides

    try:
        config = SweepConfig.from_env(**{k: v for k, v in options.items() if v is not None})
    except (ValidationError, ValueError) as e:
        err_console.print(f"[red]✗ Invalid configuration:[/] {e}")
        raise typer.Exit(code=EXIT_ABORTED) from e

    try:
        orchestrator = MatrixOrchestrator(config)
    except PairbenchError as e:
        err_console.print(f"[red]✗ {e}[/]")
        raise typer.Exit(code=EXIT_ABORTED) from e

    if not json_out:
        console.print(f"[bold]pairbench validate[/] — run_id: {config.run_id}")
        console.print(f"  clients:    {config.client_pattern or '(all)'}")
        console.print(f"  validators: {config.validator_pattern or '(all)'}")
        console.print(f"  parallel:   {config.parallel}")

    result = orchestrator.run()

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_sweep_result(result)

    if result.error:
        raise typer.Exit(code=EXIT_ABORTED)
    if result.overall_status != OverallStatus.PASSED:
        raise typer.Exit(code=EXIT_FAILED)


# ── Info commands ────────────────────────────────────────────────────────


def images(
    client: str = typer.Option("", "--client", "-c", help="Regex selecting clients."),
    validator: str = typer.Option("", "--validator", "-t", help="Regex selecting validators."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List the clients and validators a sweep would pair."""
    from pairbench.core.errors import PairbenchError
    from pairbench.matrix.config import SweepConfig
    from pairbench.matrix.container import DockerCliRuntime
    from pairbench.matrix.images import LocalImageResolver

    config = SweepConfig.from_env()
    try:
        runtime = DockerCliRuntime(network_prefix=config.network_prefix)
        clients = LocalImageResolver(runtime, config.client_image_prefix).resolve(client)
        validators = LocalImageResolver(runtime, config.validator_image_prefix).resolve(validator)
    except PairbenchError as e:
        err_console.print(f"[red]✗ {e}[/]")
        raise typer.Exit(code=1) from e

    if json_out:
        typer.echo(json.dumps({"clients": clients, "validators": validators}, indent=2))
        return

    for title, found in (("Clients", clients), ("Validators", validators)):
        table = Table(title=title)
        table.add_column("Name", style="bold cyan")
        table.add_column("Image")
        for name, image in found.items():
            table.add_row(name, image)
        console.print(table)

    console.print(f"{len(clients) * len(validators)} pairs")


def clean(
    prefix: str = typer.Option("pairbench", "--prefix", help="Label prefix of managed containers."),
) -> None:
    """Remove leftover pairbench containers and networks."""
    from pairbench.matrix.container import DockerCliRuntime

    if not DockerCliRuntime.is_docker_available():
        err_console.print("[red]Docker is not available.[/]")
        raise typer.Exit(code=1)

    runtime = DockerCliRuntime(label_prefix=prefix, network_prefix=prefix)
    removed = runtime.cleanup_orphans()
    console.print(f"[green]Removed {removed} leftover containers.[/]")


# ── Output formatters ────────────────────────────────────────────────────


def _print_sweep_result(result: object) -> None:
    """Pretty-print a SweepResult as a client × validator table."""
    from pairbench.matrix.results import OverallStatus

    r = result  # type: ignore[attr-defined]
    if r.error:
        err_console.print(f"[red bold]ERROR[/] — {r.summary}")
        return

    validators = sorted({v for row in r.results.values() for v in row})

    table = Table(title="Validation Matrix")
    table.add_column("Client", style="bold")
    for v in validators:
        table.add_column(v)

    failures = []
    for client in sorted(r.results):
        cells = []
        for v in validators:
            verdict = r.results[client].get(v)
            if verdict is None:
                cells.append("—")
            elif verdict.passed:
                cells.append(f"[green]pass[/green] {verdict.duration_seconds:.1f}s")
            else:
                cells.append(f"[red]fail[/red] {verdict.duration_seconds:.1f}s")
                failures.append(verdict)
        table.add_row(client, *cells)

    console.print(table)

    if failures:
        ftable = Table(title="Failures")
        ftable.add_column("Client", style="bold")
        ftable.add_column("Validator")
        ftable.add_column("Reason")
        for verdict in failures:
            reason = str(verdict.error) if verdict.error else f"validator exit code {verdict.exit_code}"
            ftable.add_row(verdict.client, verdict.validator, reason)
        console.print(ftable)

    style = "green" if r.overall_status == OverallStatus.PASSED else "red"
    console.print(f"\n[bold {style}]{r.overall_status.value}[/] — {r.summary}")
