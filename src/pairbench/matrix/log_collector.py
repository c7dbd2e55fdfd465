"""Structured log directories and summary reports for pairbench sweeps.

Every sweep produces a self-contained ``{run_id}/`` directory that can be
archived as a CI artifact. Container output lands in one directory per
pair; the sweep summary is written next to it as JSON and, optionally, as
a single-file HTML matrix.

Output Structure::

    {output_dir}/{run_id}/
    ├── summary.json
    ├── report.html
    └── validator/
        ├── rpc/
        │   ├── geth/
        │   │   ├── client.log
        │   │   └── validator.log
        │   └── nethermind/
        │       └── ...
        └── sync/
            └── ...

Architecture Decisions:
    - Directory-per-run: runs never collide, even in parallel CI.
    - Directory-per-validator, then per-client: a validator's verdicts for
      every client sit side by side.
    - Path separators in identifiers (``clients/geth``) become ``_`` so an
      identifier always maps to exactly one directory level.
    - HTML inline CSS: the report is a single self-contained file.

Tags:
    logs, collector, artifacts, reporting, html
"""

from __future__ import annotations

import html
import os
from datetime import UTC, datetime
from pathlib import Path

from pairbench.core.logging import get_logger
from pairbench.matrix.results import SweepResult

logger = get_logger(__name__)

_STATUS_COLOR = {
    "PASSED": "#22c55e",
    "FAILED": "#ef4444",
    "PARTIAL": "#f59e0b",
    "ERROR": "#ef4444",
    "SKIPPED": "#6b7280",
    "PENDING": "#6b7280",
}


def sanitize(identifier: str) -> str:
    """Make an identifier usable as a single path component."""
    cleaned = identifier.replace(os.sep, "_").replace("/", "_")
    return cleaned or "_"


class LogCollector:
    """Creates the per-sweep output tree and writes summaries.

    Parameters
    ----------
    output_dir
        Base directory for output.
    run_id
        Unique run identifier.
    """

    def __init__(self, output_dir: Path, run_id: str) -> None:
        self.run_dir = output_dir / run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id

    def validator_dir(self, validator: str) -> Path:
        """Get or create the directory for a validator."""
        d = self.run_dir / "validator" / sanitize(validator)
        d.mkdir(parents=True, exist_ok=True)
        return d

    def pair_dir(self, validator: str, client: str) -> Path:
        """Get or create the directory holding one pair's container logs."""
        d = self.validator_dir(validator) / sanitize(client)
        d.mkdir(parents=True, exist_ok=True)
        return d

    # ------------------------------------------------------------------
    # Summary reports
    # ------------------------------------------------------------------

    def write_summary(self, result: SweepResult) -> Path:
        """Write machine-readable summary JSON."""
        path = self.run_dir / "summary.json"
        path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        logger.info("summary.written", path=str(path))
        return path

    def write_html_report(self, result: SweepResult) -> Path:
        """Render the client × validator matrix as an HTML page."""
        path = self.run_dir / "report.html"
        path.write_text(self._generate_matrix_html(result), encoding="utf-8")
        logger.info("report.written", path=str(path))
        return path

    # ------------------------------------------------------------------
    # HTML generation
    # ------------------------------------------------------------------

    @staticmethod
    def _generate_matrix_html(result: SweepResult) -> str:
        validators = sorted({v for row in result.results.values() for v in row})

        header = "".join(f"<th>{html.escape(v)}</th>" for v in validators)
        rows = ""
        for client in sorted(result.results):
            cells = ""
            for validator in validators:
                verdict = result.results[client].get(validator)
                if verdict is None:
                    cells += '<td class="none">—</td>'
                    continue
                label = "pass" if verdict.passed else "fail"
                detail = str(verdict.error) if verdict.error else f"exit {verdict.exit_code}"
                cells += (
                    f'<td class="{label}" title="{html.escape(detail)}">'
                    f"{label} <span>{verdict.duration_seconds:.1f}s</span></td>"
                )
            rows += f"""
            <tr>
                <td><strong>{html.escape(client)}</strong></td>{cells}
            </tr>"""

        color = _STATUS_COLOR.get(result.overall_status.value, "#6b7280")

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>pairbench Report — {result.run_id}</title>
    <style>
        * {{ margin: 0; padding: 0; box-sizing: border-box; }}
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               background: #0f172a; color: #e2e8f0; padding: 2rem; }}
        h1 {{ color: #f8fafc; margin-bottom: 0.5rem; }}
        .meta {{ color: #94a3b8; margin-bottom: 2rem; }}
        .status-banner {{
            background: {color}22;
            border: 1px solid {color};
            border-radius: 8px;
            padding: 1rem 1.5rem;
            margin-bottom: 2rem;
        }}
        .status-banner strong {{ color: {color}; }}
        table {{ border-collapse: collapse; margin-top: 1rem; }}
        th {{ text-align: left; padding: 0.75rem; background: #1e293b;
             color: #94a3b8; font-size: 0.85rem; }}
        td {{ padding: 0.75rem; border-bottom: 1px solid #1e293b; }}
        td.pass {{ color: #22c55e; font-weight: bold; }}
        td.fail {{ color: #ef4444; font-weight: bold; }}
        td span {{ color: #64748b; font-weight: normal; }}
        .footer {{ margin-top: 2rem; color: #64748b; font-size: 0.85rem; }}
    </style>
</head>
<body>
    <h1>pairbench Report</h1>
    <div class="meta">
        Run ID: {result.run_id} &nbsp;|&nbsp;
        Started: {result.started_at} &nbsp;|&nbsp;
        Duration: {result.duration_seconds:.1f}s
    </div>
    <div class="status-banner">
        <strong>{result.overall_status.value}</strong> — {html.escape(result.summary)}
    </div>
    <table>
        <thead>
            <tr><th>Client</th>{header}</tr>
        </thead>
        <tbody>{rows}
        </tbody>
    </table>
    <div class="footer">
        Generated by pairbench at {datetime.now(UTC).isoformat()}
    </div>
</body>
</html>"""
