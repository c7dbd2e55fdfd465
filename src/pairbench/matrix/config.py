"""Configuration model for pairbench sweeps.

Every field can be overridden through a ``PAIRBENCH_*`` environment
variable, so CI jobs can select clients and validators without touching
code::

    PAIRBENCH_CLIENTS=geth PAIRBENCH_VALIDATORS=rpc pairbench validate

Key Concepts:
    SweepConfig: Which clients and validators to pair, the per-pair wiring
        (port, host alias, identity script), deadlines for the two blocking
        points of a pair, parallelism and output artifacts.

Architecture Decisions:
    - Pydantic v2 (not dataclass): ``model_dump_json()`` for the summary
      artifact and ``model_validator(mode="after")`` for the run_id.
    - from_env() classmethod: explicit env-var parsing rather than
      ``pydantic-settings``.
    - Override precedence: kwargs > env vars > field defaults.
    - Deadlines default to ``None`` (wait forever); set them in CI.

Tags:
    config, settings, pydantic, environment
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

_BOOL_FIELDS = ("parallel", "verbose")
_INT_FIELDS = ("client_port", "max_parallel")
_FLOAT_FIELDS = (
    "poll_interval_seconds",
    "connect_timeout_seconds",
    "readiness_timeout_seconds",
    "validator_timeout_seconds",
)


class SweepConfig(BaseModel):
    """Configuration for one cross-product sweep.

    Example::

        config = SweepConfig(
            client_pattern="geth|nethermind",
            validator_pattern="rpc",
            overrides={"HIVE_FORK_HOMESTEAD": "0"},
            readiness_timeout_seconds=60,
        )
    """

    # What to pair
    client_pattern: str = Field(
        default="",
        description="Regular expression selecting clients (empty matches all)",
    )
    validator_pattern: str = Field(
        default="",
        description="Regular expression selecting validators (empty matches all)",
    )
    overrides: dict[str, str] = Field(
        default_factory=dict,
        description="Environment variables injected into every client container",
    )

    # Per-pair wiring
    client_port: int = Field(default=8545, description="Client service port probed for readiness")
    host_alias: str = Field(
        default="on-docker-host",
        description="Host alias handed to validators as HIVE_DOCKER_HOST_ALIAS",
    )
    identity_script: str | None = Field(
        default="/enode.sh",
        description="Path copied from client to validator (None disables the handoff)",
    )

    # Deadlines
    poll_interval_seconds: float = Field(default=0.1, gt=0, description="Readiness poll interval")
    connect_timeout_seconds: float = Field(default=1.0, gt=0, description="Single dial timeout")
    readiness_timeout_seconds: float | None = Field(
        default=None,
        description="Limit for a client to start listening (None waits forever)",
    )
    validator_timeout_seconds: float | None = Field(
        default=None,
        description="Limit for a validator to exit (None waits forever)",
    )

    # Images and networking
    client_image_prefix: str = Field(
        default="pairbench/clients/",
        description="Repository prefix of local client images",
    )
    validator_image_prefix: str = Field(
        default="pairbench/validators/",
        description="Repository prefix of local validator images",
    )
    network: str | None = Field(
        default=None,
        description="Existing Docker network (a per-sweep network is created if not set)",
    )
    network_prefix: str = Field(default="pairbench", description="Prefix for sweep networks")

    # Execution
    parallel: bool = Field(default=False, description="Run pairs concurrently")
    max_parallel: int = Field(default=4, ge=1, description="Max concurrent pairs")

    # Output
    output_dir: Path = Field(
        default=Path("pairbench-results"),
        description="Directory for container logs and summaries",
    )
    output_format: Literal["json", "html", "all"] = Field(
        default="json",
        description="Summary artifact(s) to write",
    )
    verbose: bool = Field(default=False, description="Enable verbose output")

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @field_validator("readiness_timeout_seconds", "validator_timeout_seconds")
    @classmethod
    def _positive_or_none(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("timeout must be positive or None")
        return value

    @model_validator(mode="after")
    def _set_defaults(self) -> SweepConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    @property
    def network_name(self) -> str:
        """Name of the per-sweep network created when ``network`` is unset."""
        return f"{self.network_prefix}-{self.run_id}"

    @classmethod
    def from_env(cls, **overrides: Any) -> SweepConfig:
        """Create config from PAIRBENCH_* environment variables."""
        env_map = {
            "client_pattern": "PAIRBENCH_CLIENTS",
            "validator_pattern": "PAIRBENCH_VALIDATORS",
            "overrides": "PAIRBENCH_OVERRIDES",
            "client_port": "PAIRBENCH_CLIENT_PORT",
            "host_alias": "PAIRBENCH_HOST_ALIAS",
            "identity_script": "PAIRBENCH_IDENTITY_SCRIPT",
            "poll_interval_seconds": "PAIRBENCH_POLL_INTERVAL_SECONDS",
            "connect_timeout_seconds": "PAIRBENCH_CONNECT_TIMEOUT_SECONDS",
            "readiness_timeout_seconds": "PAIRBENCH_READINESS_TIMEOUT_SECONDS",
            "validator_timeout_seconds": "PAIRBENCH_VALIDATOR_TIMEOUT_SECONDS",
            "network": "PAIRBENCH_NETWORK",
            "parallel": "PAIRBENCH_PARALLEL",
            "max_parallel": "PAIRBENCH_MAX_PARALLEL",
            "output_dir": "PAIRBENCH_OUTPUT_DIR",
            "verbose": "PAIRBENCH_VERBOSE",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is not None:
                if field_name == "overrides":
                    values[field_name] = parse_overrides(env_val.split(","))
                elif field_name in _BOOL_FIELDS:
                    values[field_name] = env_val.lower() in ("true", "1", "yes")
                elif field_name in _INT_FIELDS:
                    values[field_name] = int(env_val)
                elif field_name in _FLOAT_FIELDS:
                    values[field_name] = float(env_val) if env_val else None
                else:
                    values[field_name] = env_val
        values.update(overrides)
        return cls(**values)


def parse_overrides(items: list[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings into an environment mapping.

    Blank items are skipped; an item without ``=`` raises ValueError.
    """
    result: dict[str, str] = {}
    for item in items:
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid override {item!r}: expected KEY=VALUE")
        result[key.strip()] = value
    return result
