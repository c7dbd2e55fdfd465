"""Matrix orchestrator: run every (client, validator) pair of a sweep.

Coordinates the full sweep lifecycle: resolve images → create network →
run each pair → assemble the result matrix → write reports → release the
network.

Key Concepts:
    MatrixOrchestrator: Config → ``ResultMatrix`` (``sweep()``) or
        ``SweepResult`` (``run()``). Pairs run sequentially or through a
        bounded ``ThreadPoolExecutor``.
    validate_clients(): One-call entry point taking patterns and client
        overrides, returning the matrix.

Architecture Decisions:
    - Validators outer, clients inner: one validator's log directory fills
      up before the next one starts.
    - Sequential by default. With ``parallel=True`` workers only run pairs;
      the submitting thread records every verdict, so the matrix has a
      single writer.
    - No early termination and no retries: a failed pair is a verdict, not
      an exception.
    - Network-per-sweep: created unless ``config.network`` names an
      existing one, removed on every path (best effort).

Tags:
    workflow, orchestration, matrix, parallel, sweep
"""

from __future__ import annotations

import contextvars
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
from typing import Any

from pairbench.core.errors import (
    NoClientsMatchedError,
    NoValidatorsMatchedError,
    PairbenchError,
)
from pairbench.core.logging import LogContext, get_logger
from pairbench.matrix.config import SweepConfig
from pairbench.matrix.container import ContainerRuntime, DockerCliRuntime
from pairbench.matrix.controller import PairRunController, PairSettings
from pairbench.matrix.images import ImageResolver, LocalImageResolver
from pairbench.matrix.log_collector import LogCollector
from pairbench.matrix.readiness import ReadinessProber
from pairbench.matrix.results import (
    FailureDetail,
    FailureKind,
    ResultMatrix,
    RunVerdict,
    SweepResult,
)

logger = get_logger(__name__)


class MatrixOrchestrator:
    """Runs the cross product of resolved clients and validators.

    Parameters
    ----------
    config
        Sweep configuration.
    runtime
        Container runtime (defaults to the docker CLI).
    client_resolver, validator_resolver
        Pattern → ``{identifier: image}`` resolvers (default: local images
        under the configured repository prefixes).
    log_collector
        Output tree for container logs and summaries.
    prober
        Readiness prober (default built from the config's poll settings).

    Example::

        config = SweepConfig(client_pattern="geth", validator_pattern="rpc")
        result = MatrixOrchestrator(config).run()
        print(result.summary)
    """

    def __init__(
        self,
        config: SweepConfig,
        runtime: ContainerRuntime | None = None,
        client_resolver: ImageResolver | None = None,
        validator_resolver: ImageResolver | None = None,
        log_collector: LogCollector | None = None,
        prober: ReadinessProber | None = None,
    ) -> None:
        self.config = config
        self.runtime = runtime or DockerCliRuntime(network_prefix=config.network_prefix)
        self.client_resolver = client_resolver or LocalImageResolver(
            self.runtime, config.client_image_prefix  # type: ignore[arg-type]
        )
        self.validator_resolver = validator_resolver or LocalImageResolver(
            self.runtime, config.validator_image_prefix  # type: ignore[arg-type]
        )
        self.log_collector = log_collector or LogCollector(config.output_dir, config.run_id)
        self.prober = prober or ReadinessProber(
            self.runtime,
            poll_interval=config.poll_interval_seconds,
            timeout=config.readiness_timeout_seconds,
            connect_timeout=config.connect_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def sweep(self) -> ResultMatrix:
        """Run every pair and return the sealed result matrix.

        Raises
        ------
        NoClientsMatchedError, NoValidatorsMatchedError
            The client or validator pattern selected nothing.
        """
        clients = self.client_resolver.resolve(self.config.client_pattern)
        if not clients:
            raise NoClientsMatchedError(
                f"No clients match pattern {self.config.client_pattern!r}"
            ).with_context(run_id=self.config.run_id, pattern=self.config.client_pattern)

        validators = self.validator_resolver.resolve(self.config.validator_pattern)
        if not validators:
            raise NoValidatorsMatchedError(
                f"No validators match pattern {self.config.validator_pattern!r}"
            ).with_context(run_id=self.config.run_id, pattern=self.config.validator_pattern)

        matrix = ResultMatrix(clients, validators)

        with LogContext(run_id=self.config.run_id):
            logger.info("sweep.start", clients=len(clients), validators=len(validators))
            network = self._acquire_network()
            try:
                controller = PairRunController(
                    self.runtime,
                    self.prober,
                    self._pair_settings(network or self.config.network),
                )
                pairs = [
                    (client, clients[client], validator, validators[validator])
                    for validator in validators
                    for client in clients
                ]
                if self.config.parallel and len(pairs) > 1:
                    self._run_parallel(controller, pairs, matrix)
                else:
                    self._run_sequential(controller, pairs, matrix)
            finally:
                matrix.seal()
                if network:
                    self._release_network(network)

        logger.info("sweep.finished", passed=matrix.passed_count, failed=matrix.failed_count)
        return matrix

    def run(self) -> SweepResult:
        """Run the sweep and produce a summary, writing the configured reports.

        Configuration and sweep-level runtime errors are captured into
        ``SweepResult.error`` instead of being raised.
        """
        result = SweepResult(
            run_id=self.config.run_id,
            client_pattern=self.config.client_pattern,
            validator_pattern=self.config.validator_pattern,
        )

        try:
            matrix = self.sweep()
        except PairbenchError as e:
            result.error = str(e)
            logger.error("sweep.failed", run_id=self.config.run_id, **e.to_dict())
        else:
            result.results = matrix.as_dict()

        result.mark_complete()

        self.log_collector.write_summary(result)
        if self.config.output_format in ("html", "all"):
            self.log_collector.write_html_report(result)

        logger.info("sweep.complete", run_id=self.config.run_id, summary=result.summary)
        return result

    # ------------------------------------------------------------------
    # Private methods
    # ------------------------------------------------------------------

    def _pair_settings(self, network: str | None) -> PairSettings:
        return PairSettings(
            client_port=self.config.client_port,
            host_alias=self.config.host_alias,
            identity_script=self.config.identity_script,
            client_env=dict(self.config.overrides),
            validator_timeout=self.config.validator_timeout_seconds,
            network=network,
            run_id=self.config.run_id,
        )

    def _run_sequential(
        self,
        controller: PairRunController,
        pairs: list[tuple[str, str, str, str]],
        matrix: ResultMatrix,
    ) -> None:
        """Run pairs one at a time."""
        for pair in pairs:
            matrix.record(self._run_pair(controller, *pair))

    def _run_parallel(
        self,
        controller: PairRunController,
        pairs: list[tuple[str, str, str, str]],
        matrix: ResultMatrix,
    ) -> None:
        """Run pairs through a bounded pool; verdicts are recorded here."""
        max_workers = min(self.config.max_parallel, len(pairs))

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pairbench") as pool:
            futures: dict[Future[RunVerdict], tuple[str, str, str, str]] = {}
            for pair in pairs:
                # One context copy per task so LogContext bindings reach workers
                ctx = contextvars.copy_context()
                futures[pool.submit(ctx.run, self._run_pair, controller, *pair)] = pair

            for future in as_completed(futures):
                client, _, validator, _ = futures[future]
                try:
                    verdict = future.result()
                except Exception as e:
                    logger.exception("pair.crashed", client=client, validator=validator)
                    verdict = _internal_verdict(client, validator, e)
                matrix.record(verdict)

    def _run_pair(
        self,
        controller: PairRunController,
        client: str,
        client_image: str,
        validator: str,
        validator_image: str,
    ) -> RunVerdict:
        try:
            log_dir = self.log_collector.pair_dir(validator, client)
        except OSError as e:
            logger.error("pair.log_dir_failed", client=client, validator=validator, error=str(e))
            return _internal_verdict(client, validator, e)

        verdict = controller.run(client, client_image, validator, validator_image, log_dir)

        if verdict.passed:
            logger.info(
                "pair.passed",
                client=client,
                validator=validator,
                seconds=round(verdict.duration_seconds, 3),
            )
        else:
            logger.warning(
                "pair.failed",
                client=client,
                validator=validator,
                seconds=round(verdict.duration_seconds, 3),
                exit_code=verdict.exit_code,
                error=str(verdict.error) if verdict.error else None,
            )
        return verdict

    def _acquire_network(self) -> str | None:
        """Create the per-sweep network; None when an existing one is configured."""
        if self.config.network:
            return None
        return self.runtime.create_network(self.config.network_name)

    def _release_network(self, network: str) -> None:
        try:
            self.runtime.remove_network(network)
        except Exception as e:
            logger.warning("network.remove_failed", network=network, error=str(e))


def _internal_verdict(client: str, validator: str, error: Exception) -> RunVerdict:
    now = datetime.now(UTC)
    return RunVerdict(
        client=client,
        validator=validator,
        start=now,
        end=now,
        error=FailureDetail(kind=FailureKind.INTERNAL, message=str(error) or type(error).__name__),
    )


def validate_clients(
    client_pattern: str,
    validator_pattern: str,
    overrides: Mapping[str, str] | None = None,
    *,
    runtime: ContainerRuntime | None = None,
    client_resolver: ImageResolver | None = None,
    validator_resolver: ImageResolver | None = None,
    prober: ReadinessProber | None = None,
    **config_kwargs: Any,
) -> ResultMatrix:
    """Run every matching validator against every matching client.

    Raises the configuration error when either pattern selects nothing;
    per-pair failures are recorded in the returned matrix.
    """
    config = SweepConfig(
        client_pattern=client_pattern,
        validator_pattern=validator_pattern,
        overrides=dict(overrides or {}),
        **config_kwargs,
    )
    orchestrator = MatrixOrchestrator(
        config,
        runtime=runtime,
        client_resolver=client_resolver,
        validator_resolver=validator_resolver,
        prober=prober,
    )
    return orchestrator.sweep()
