"""
Shared pytest fixtures for pairbench tests.

This module provides:
- Silent structlog configuration (``structlog.testing.capture_logs`` still works)
- A scripted in-memory container runtime
- A fast readiness prober and a pair run controller wired to it

No Docker daemon is needed by any test.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
import structlog

from pairbench.matrix.controller import PairRunController, PairSettings
from pairbench.matrix.mock_runtime import ImageScript, ScriptedRuntime
from pairbench.matrix.readiness import ReadinessProber

CLIENT_IMAGE = "clients/geth:latest"
VALIDATOR_IMAGE = "validators/rpc:latest"


@pytest.fixture(autouse=True)
def _quiet_structlog() -> Generator[None, None, None]:
    """Route structlog events nowhere unless a test captures them."""
    structlog.configure(
        processors=[],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
def runtime() -> ScriptedRuntime:
    """Runtime with a healthy client and a validator that exits 0."""
    return ScriptedRuntime(
        {
            CLIENT_IMAGE: ImageScript(),
            VALIDATOR_IMAGE: ImageScript(exit_code=0),
        }
    )


def _fast_prober(runtime: ScriptedRuntime, timeout: float | None = 2.0) -> ReadinessProber:
    return ReadinessProber(runtime, poll_interval=0.001, timeout=timeout, dial=runtime.dial)


@pytest.fixture
def make_prober():
    """Factory for probers that poll every millisecond through the scripted dial."""
    return _fast_prober


@pytest.fixture
def prober(runtime: ScriptedRuntime) -> ReadinessProber:
    return _fast_prober(runtime)


@pytest.fixture
def controller(runtime: ScriptedRuntime, prober: ReadinessProber) -> PairRunController:
    return PairRunController(runtime, prober, PairSettings(run_id="testrun"))
