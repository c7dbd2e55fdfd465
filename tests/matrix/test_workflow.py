"""Tests for pairbench.matrix.workflow — sweeping the client × validator matrix."""

from __future__ import annotations

import io
import json
from unittest.mock import MagicMock

import pytest

from pairbench.core.errors import ContainerRuntimeError, NoClientsMatchedError, NoValidatorsMatchedError
from pairbench.core.logging import configure_logging
from pairbench.matrix.config import SweepConfig
from pairbench.matrix.images import StaticImageResolver
from pairbench.matrix.log_collector import LogCollector
from pairbench.matrix.mock_runtime import ImageScript, ScriptedRuntime
from pairbench.matrix.readiness import ReadinessProber
from pairbench.matrix.results import FailureKind, OverallStatus
from pairbench.matrix.workflow import MatrixOrchestrator, validate_clients

CLIENTS = {"A": "clients/a:latest", "B": "clients/b:latest"}
VALIDATORS = {"V1": "validators/v1:latest", "V2": "validators/v2:latest", "V3": "validators/v3:latest"}


def _orchestrator(tmp_path, make_prober, scripts=None, clients=CLIENTS, validators=VALIDATORS, **config):
    runtime = ScriptedRuntime(scripts or {})
    cfg = SweepConfig(output_dir=tmp_path, run_id="run1", **config)
    orchestrator = MatrixOrchestrator(
        cfg,
        runtime=runtime,
        client_resolver=StaticImageResolver(clients),
        validator_resolver=StaticImageResolver(validators),
        prober=make_prober(runtime),
    )
    return runtime, orchestrator


# ===========================================================================
# sweep()
# ===========================================================================


class TestSweep:
    def test_matrix_shape_is_cross_product(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober)

        matrix = orch.sweep()

        assert len(matrix) == 2
        assert set(matrix.clients) == {"A", "B"}
        for client in CLIENTS:
            assert set(matrix[client]) == set(VALIDATORS)
        assert matrix.is_complete
        assert matrix.sealed
        assert matrix.passed_count == 6

    def test_mixed_outcomes(self, tmp_path, make_prober):
        scripts = {"clients/b:latest": ImageScript(exits_after=1, exit_code=1)}
        runtime, orch = _orchestrator(tmp_path, make_prober, scripts, validators={"V1": "validators/v1"})

        matrix = orch.sweep()

        assert matrix["A"]["V1"].passed
        b = matrix["B"]["V1"]
        assert not b.passed
        assert b.error is not None
        assert b.error.kind == FailureKind.TERMINATED

    def test_sweep_under_configured_logging(self, tmp_path, make_prober):
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=True, stream=stream, cache_loggers=False)
        scripts = {"clients/b:latest": ImageScript(exits_after=1, exit_code=1)}
        runtime, orch = _orchestrator(tmp_path, make_prober, scripts, validators={"V1": "validators/v1"})

        matrix = orch.sweep()

        assert matrix.is_complete
        assert matrix.failed_count == 1
        events = [json.loads(line)["event"] for line in stream.getvalue().splitlines()]
        assert "sweep.start" in events
        assert "pair.failed" in events
        assert "sweep.finished" in events

    def test_failed_pair_does_not_stop_sweep(self, tmp_path, make_prober):
        scripts = {"validators/v1:latest": ImageScript(exit_code=1)}
        runtime, orch = _orchestrator(tmp_path, make_prober, scripts)
        matrix = orch.sweep()
        assert matrix.is_complete
        assert matrix.failed_count == 2
        assert matrix.passed_count == 4

    def test_validators_outer_clients_inner(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober)
        orch.sweep()
        creates = [runtime.containers[cid].handle.image for name, _, cid in runtime.events_for(["create"])]
        assert creates == [
            "clients/a:latest", "validators/v1:latest",
            "clients/b:latest", "validators/v1:latest",
            "clients/a:latest", "validators/v2:latest",
            "clients/b:latest", "validators/v2:latest",
            "clients/a:latest", "validators/v3:latest",
            "clients/b:latest", "validators/v3:latest",
        ]

    def test_every_container_released(self, tmp_path, make_prober):
        scripts = {"clients/a:latest": ImageScript(listening=False)}
        runtime = ScriptedRuntime(scripts)
        cfg = SweepConfig(output_dir=tmp_path, run_id="run1")
        orch = MatrixOrchestrator(
            cfg,
            runtime=runtime,
            client_resolver=StaticImageResolver(CLIENTS),
            validator_resolver=StaticImageResolver({"V1": "validators/v1"}),
            prober=make_prober(runtime, 0.05),
        )
        orch.sweep()
        assert runtime.leaked() == []

    def test_patterns_select_subset(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober, client_pattern="^A$", validator_pattern="V[12]")
        matrix = orch.sweep()
        assert matrix.clients == ["A"]
        assert matrix.validators == ["V1", "V2"]

    def test_no_clients_matched(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober, client_pattern="nethermind")
        with pytest.raises(NoClientsMatchedError):
            orch.sweep()
        assert runtime.containers == {}
        assert runtime.networks == []

    def test_no_validators_matched(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober, validators={})
        with pytest.raises(NoValidatorsMatchedError):
            orch.sweep()
        assert runtime.containers == {}

    def test_resolver_failure_propagates(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober)
        orch.client_resolver = MagicMock()
        orch.client_resolver.resolve.side_effect = ContainerRuntimeError("docker image ls failed")
        with pytest.raises(ContainerRuntimeError):
            orch.sweep()

    def test_sweep_network_created_and_removed(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober)
        orch.sweep()
        assert runtime.networks == ["pairbench-run1"]
        assert runtime.removed_networks == ["pairbench-run1"]
        assert {c.network for c in runtime.created()} == {"pairbench-run1"}

    def test_existing_network_used(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober, network="ci-net")
        orch.sweep()
        assert runtime.networks == []
        assert runtime.removed_networks == []
        assert {c.network for c in runtime.created()} == {"ci-net"}

    def test_network_removal_failure_is_ignored(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober)
        runtime.remove_network = MagicMock(side_effect=ContainerRuntimeError("in use"))
        matrix = orch.sweep()
        assert matrix.is_complete

    def test_pair_log_directories(self, tmp_path, make_prober):
        clients = {"clients/geth": "clients/geth:latest"}
        runtime, orch = _orchestrator(tmp_path, make_prober, clients=clients, validators={"V1": "validators/v1"})
        orch.sweep()
        pair_dir = tmp_path / "run1" / "validator" / "V1" / "clients_geth"
        assert (pair_dir / "client.log").exists()
        assert (pair_dir / "validator.log").exists()

    def test_overrides_reach_clients_only(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober, overrides={"HIVE_NETWORK_ID": "7"})
        orch.sweep()
        assert all(c.env == {"HIVE_NETWORK_ID": "7"} for c in runtime.created("client"))
        assert all("HIVE_NETWORK_ID" not in c.env for c in runtime.created("validator"))

    def test_validator_timeout_from_config(self, tmp_path, make_prober):
        scripts = {"validators/v1": ImageScript(hangs=True)}
        runtime, orch = _orchestrator(
            tmp_path, make_prober, scripts, validators={"V1": "validators/v1"}, validator_timeout_seconds=1.0
        )
        matrix = orch.sweep()
        assert all(v.error.kind == FailureKind.TIMEOUT for v in matrix.verdicts())


class TestParallelSweep:
    def test_same_matrix_as_sequential(self, tmp_path, make_prober):
        scripts = {"validators/v2:latest": ImageScript(exit_code=137)}
        runtime, orch = _orchestrator(tmp_path, make_prober, scripts, parallel=True, max_parallel=3)

        matrix = orch.sweep()

        assert matrix.is_complete
        assert matrix.passed_count == 4
        assert not matrix["A"]["V2"].passed
        assert matrix["A"]["V2"].exit_code == 137
        assert runtime.leaked() == []

    def test_single_pair_runs_inline(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(
            tmp_path, make_prober, clients={"A": "a"}, validators={"V1": "v1"}, parallel=True
        )
        assert orch.sweep().passed_count == 1


# ===========================================================================
# run()
# ===========================================================================


class TestRun:
    def test_writes_summary(self, tmp_path, make_prober):
        scripts = {"validators/v1:latest": ImageScript(exit_code=1)}
        runtime, orch = _orchestrator(tmp_path, make_prober, scripts)

        result = orch.run()

        assert result.overall_status == OverallStatus.PARTIAL
        assert result.error is None
        summary = json.loads((tmp_path / "run1" / "summary.json").read_text())
        assert summary["run_id"] == "run1"
        assert summary["overall_status"] == "PARTIAL"
        assert summary["results"]["A"]["V1"]["exit_code"] == 1
        assert not (tmp_path / "run1" / "report.html").exists()

    def test_html_report(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober, output_format="all")
        result = orch.run()
        assert result.overall_status == OverallStatus.PASSED
        assert (tmp_path / "run1" / "report.html").exists()

    def test_config_error_captured(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober, clients={})

        result = orch.run()

        assert result.overall_status == OverallStatus.ERROR
        assert "No clients match" in result.error
        assert result.results == {}
        assert (tmp_path / "run1" / "summary.json").exists()

    def test_patterns_recorded(self, tmp_path, make_prober):
        runtime, orch = _orchestrator(tmp_path, make_prober, client_pattern="A", validator_pattern="V1")
        result = orch.run()
        assert result.client_pattern == "A"
        assert result.validator_pattern == "V1"


class TestValidateClients:
    def test_returns_matrix(self, tmp_path):
        runtime = ScriptedRuntime()
        matrix = validate_clients(
            "",
            "",
            {"HIVE_FORK": "1"},
            runtime=runtime,
            client_resolver=StaticImageResolver({"A": "a"}),
            validator_resolver=StaticImageResolver({"V1": "v1"}),
            prober=ReadinessProber(runtime, poll_interval=0.001, timeout=2.0, dial=runtime.dial),
            output_dir=tmp_path,
        )
        assert matrix["A"]["V1"].passed
        assert runtime.created("client")[0].env == {"HIVE_FORK": "1"}

    def test_raises_config_error(self, tmp_path):
        with pytest.raises(NoValidatorsMatchedError):
            validate_clients(
                "",
                "missing",
                runtime=ScriptedRuntime(),
                client_resolver=StaticImageResolver({"A": "a"}),
                validator_resolver=StaticImageResolver({"V1": "v1"}),
                output_dir=tmp_path,
            )


class TestLogCollectorInjection:
    def test_custom_collector(self, tmp_path, make_prober):
        runtime = ScriptedRuntime()
        collector = LogCollector(tmp_path / "elsewhere", "custom")
        orch = MatrixOrchestrator(
            SweepConfig(output_dir=tmp_path, run_id="run1"),
            runtime=runtime,
            client_resolver=StaticImageResolver({"A": "a"}),
            validator_resolver=StaticImageResolver({"V1": "v1"}),
            log_collector=collector,
            prober=make_prober(runtime),
        )
        orch.run()
        assert (tmp_path / "elsewhere" / "custom" / "summary.json").exists()
        assert (tmp_path / "elsewhere" / "custom" / "validator" / "V1" / "A" / "client.log").exists()
