"""Tests for pairbench.matrix.config — SweepConfig and override parsing."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from pairbench.matrix.config import SweepConfig, parse_overrides


class TestSweepConfig:
    def test_defaults(self):
        config = SweepConfig()
        assert config.client_pattern == ""
        assert config.validator_pattern == ""
        assert config.client_port == 8545
        assert config.host_alias == "on-docker-host"
        assert config.identity_script == "/enode.sh"
        assert config.poll_interval_seconds == 0.1
        assert config.readiness_timeout_seconds is None
        assert config.validator_timeout_seconds is None
        assert config.parallel is False
        assert config.max_parallel == 4
        assert config.output_format == "json"
        assert config.network is None

    def test_run_id_auto_generated(self):
        c1 = SweepConfig()
        c2 = SweepConfig()
        assert c1.run_id != c2.run_id
        assert len(c1.run_id) == 12

    def test_explicit_run_id_kept(self):
        assert SweepConfig(run_id="abc").run_id == "abc"

    def test_network_name(self):
        assert SweepConfig(run_id="abc").network_name == "pairbench-abc"
        assert SweepConfig(run_id="abc", network_prefix="ci").network_name == "ci-abc"

    @pytest.mark.parametrize("field", ["readiness_timeout_seconds", "validator_timeout_seconds"])
    def test_non_positive_timeout_rejected(self, field):
        with pytest.raises(ValidationError):
            SweepConfig(**{field: 0})

    def test_invalid_output_format(self):
        with pytest.raises(ValidationError):
            SweepConfig(output_format="junit")

    def test_max_parallel_at_least_one(self):
        with pytest.raises(ValidationError):
            SweepConfig(max_parallel=0)


class TestFromEnv:
    @patch.dict(
        os.environ,
        {
            "PAIRBENCH_CLIENTS": "geth",
            "PAIRBENCH_VALIDATORS": "rpc|sync",
            "PAIRBENCH_PARALLEL": "true",
            "PAIRBENCH_MAX_PARALLEL": "8",
            "PAIRBENCH_READINESS_TIMEOUT_SECONDS": "30",
            "PAIRBENCH_OVERRIDES": "HIVE_FORK=1,HIVE_NETWORK_ID=7",
            "PAIRBENCH_OUTPUT_DIR": "/tmp/pairbench",
        },
    )
    def test_reads_env(self):
        config = SweepConfig.from_env()
        assert config.client_pattern == "geth"
        assert config.validator_pattern == "rpc|sync"
        assert config.parallel is True
        assert config.max_parallel == 8
        assert config.readiness_timeout_seconds == 30.0
        assert config.overrides == {"HIVE_FORK": "1", "HIVE_NETWORK_ID": "7"}
        assert config.output_dir == Path("/tmp/pairbench")

    @patch.dict(os.environ, {"PAIRBENCH_CLIENTS": "geth", "PAIRBENCH_VERBOSE": "no"})
    def test_kwargs_take_precedence(self):
        config = SweepConfig.from_env(client_pattern="nethermind")
        assert config.client_pattern == "nethermind"
        assert config.verbose is False

    @patch.dict(os.environ, {"PAIRBENCH_VALIDATOR_TIMEOUT_SECONDS": ""})
    def test_empty_timeout_means_unbounded(self):
        assert SweepConfig.from_env().validator_timeout_seconds is None

    def test_no_env(self):
        with patch.dict(os.environ, {}, clear=True):
            config = SweepConfig.from_env()
        assert config.client_pattern == ""


class TestParseOverrides:
    def test_pairs(self):
        assert parse_overrides(["A=1", "B=two=2"]) == {"A": "1", "B": "two=2"}

    def test_empty_value_allowed(self):
        assert parse_overrides(["A="]) == {"A": ""}

    def test_blank_items_skipped(self):
        assert parse_overrides(["", "  ", "A=1"]) == {"A": "1"}

    @pytest.mark.parametrize("item", ["A", "=1"])
    def test_invalid(self, item):
        with pytest.raises(ValueError, match="KEY=VALUE"):
            parse_overrides([item])
