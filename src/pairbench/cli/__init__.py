"""
CLI layer for pairbench.

Provides the ``pairbench`` Typer application. All sweep logic lives in
``pairbench.matrix``; this package handles argument parsing, coloured
output and table formatting.

Entry point::

    pairbench --help
"""

from pairbench.cli.app import app

__all__ = ["app"]
