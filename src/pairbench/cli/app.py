"""
Root Typer application for the pairbench CLI.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

from pairbench.core.logging import configure_logging

app = Typer(
    name="pairbench",
    help="pairbench — run every validator against every client image.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("pairbench")
        except PackageNotFoundError:
            from pairbench import __version__ as v
        typer.echo(f"pairbench {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        "-l",
        help="Log level: DEBUG, INFO, WARNING, ERROR.",
        envvar="PAIRBENCH_LOG_LEVEL",
    ),
    log_json: bool | None = typer.Option(
        None,
        "--log-json/--log-console",
        help="Force JSON or console logs (default: JSON unless stderr is a TTY).",
    ),
) -> None:
    """pairbench CLI — pair clients with validators and report the matrix."""
    if log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise typer.BadParameter(f"Unknown log level: {log_level}", param_hint="--log-level")
    configure_logging(level=log_level, json_format=log_json, stream=sys.stderr)


# ── Sub-command registration ─────────────────────────────────────────────

from pairbench.cli.matrix import clean, images, validate  # noqa: E402

app.command("validate")(validate)
app.command("images")(images)
app.command("clean")(clean)
