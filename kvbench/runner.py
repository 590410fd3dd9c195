from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from .collector import MetricsRegistry
from .config import DEFAULT_MAX_IN_FLIGHT_PER_WORKER, BenchmarkBatch, BenchmarkPlan
from .errors import ConfigurationError, ConnectivityError, PayloadError
from .load import LoadTestExecutor
from .store import StoreClient, load_payload

if TYPE_CHECKING:
    from .exporter import PrometheusExporter

LOGGER = logging.getLogger("kvbench.benchmark")

ClientFactory = Callable[[int | None], StoreClient]


@dataclass
class RunSummary:
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    aborted_batches: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.completed) and not self.aborted_batches

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "completed": list(self.completed),
            "skipped": list(self.skipped),
            "aborted_batches": list(self.aborted_batches),
        }


class BenchmarkRunner:
    """Runs every batch of a plan, one store client per batch, scenarios in order."""

    def __init__(
        self,
        plan: BenchmarkPlan,
        client_factory: ClientFactory,
        registry: MetricsRegistry,
        test_duration_s: float,
        max_in_flight_per_worker: int | None = DEFAULT_MAX_IN_FLIGHT_PER_WORKER,
        payload_loader: Callable[[str], dict[str, Any]] = load_payload,
        exporter: "PrometheusExporter | None" = None,
    ) -> None:
        self._plan = plan
        self._client_factory = client_factory
        self._registry = registry
        self._test_duration_s = test_duration_s
        self._max_in_flight = max_in_flight_per_worker
        self._payload_loader = payload_loader
        self._exporter = exporter

    def run(self) -> RunSummary:
        summary = RunSummary()
        LOGGER.info("Starting load tests (%d batch(es))", len(self._plan.batches))
        for batch in self._plan:
            self._run_batch(batch, summary)
        LOGGER.info(
            "All load tests finished: %d completed, %d skipped, %d batch(es) aborted",
            len(summary.completed),
            len(summary.skipped),
            len(summary.aborted_batches),
        )
        return summary

    def _run_batch(self, batch: BenchmarkBatch, summary: RunSummary) -> None:
        LOGGER.info(
            "Executing batch %s (%d scenario(s), pool size=%s)",
            batch.label,
            len(batch.scenarios),
            batch.pool_size if batch.pool_size else "default",
        )
        try:
            client = self._client_factory(batch.pool_size)
        except ConnectivityError:
            LOGGER.exception("Cannot create store client for batch %s; skipping it", batch.label)
            self._abort(batch, summary)
            return

        with client:
            try:
                client.check()
            except ConnectivityError:
                LOGGER.exception("Failed to initialise store for batch %s; aborting it", batch.label)
                self._abort(batch, summary)
                return

            executor = LoadTestExecutor(
                store=client,
                registry=self._registry,
                test_duration_s=self._test_duration_s,
                max_in_flight_per_worker=self._max_in_flight,
                payload_loader=self._payload_loader,
                exporter=self._exporter,
            )
            for scenario in batch.scenarios:
                try:
                    executor.run(scenario)
                except (ConfigurationError, ConnectivityError, PayloadError) as exc:
                    LOGGER.warning("Skipping %s: %s", scenario.scenario_id, exc)
                    summary.skipped.append(scenario.scenario_id)
                    continue
                if not executor.last_statistics.registered:
                    LOGGER.warning(
                        "%s ran but its metrics were not registered; reporting it as skipped",
                        scenario.scenario_id,
                    )
                    summary.skipped.append(scenario.scenario_id)
                    continue
                summary.completed.append(scenario.scenario_id)

        LOGGER.info("Batch %s completed", batch.label)

    @staticmethod
    def _abort(batch: BenchmarkBatch, summary: RunSummary) -> None:
        summary.aborted_batches.append(batch.label)
        summary.skipped.extend(scenario.scenario_id for scenario in batch.scenarios)
