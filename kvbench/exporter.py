from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

from .collector import MetricsCollector
from .errors import ConfigurationError

LOGGER = logging.getLogger("kvbench.exporter")

SCENARIO_LABEL = "scenario"


class _ScenarioMirror:
    """Forwards one collector's updates to its labelled Prometheus children."""

    def __init__(self, exporter: "PrometheusExporter", scenario_id: str) -> None:
        self._put_success = exporter.put_success.labels(scenario=scenario_id)
        self._put_failure = exporter.put_failure.labels(scenario=scenario_id)
        self._get_success = exporter.get_success.labels(scenario=scenario_id)
        self._get_failure = exporter.get_failure.labels(scenario=scenario_id)
        self._put_latency = exporter.put_response_time.labels(scenario=scenario_id)
        self._get_latency = exporter.get_response_time.labels(scenario=scenario_id)

    def increment_put_success(self) -> None:
        self._put_success.inc()

    def increment_put_failure(self) -> None:
        self._put_failure.inc()

    def increment_get_success(self) -> None:
        self._get_success.inc()

    def increment_get_failure(self) -> None:
        self._get_failure.inc()

    def record_put_latency(self, duration_ms: float) -> None:
        self._put_latency.observe(max(duration_ms, 0.0) / 1000.0)

    def record_get_latency(self, duration_ms: float) -> None:
        self._get_latency.observe(max(duration_ms, 0.0) / 1000.0)


class PrometheusExporter:
    """Publishes per-scenario counters, timers and derived gauges on a /metrics endpoint.

    Every metric carries a ``scenario`` label. Derived gauges read the collector
    when scraped, so they always match what the report will show.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        labels = [SCENARIO_LABEL]

        self.put_success = Counter(
            "kvbench_put_success", "Count of successful PUT operations", labels, registry=self.registry
        )
        self.put_failure = Counter(
            "kvbench_put_failure", "Count of failed PUT operations", labels, registry=self.registry
        )
        self.get_success = Counter(
            "kvbench_get_success", "Count of successful GET operations", labels, registry=self.registry
        )
        self.get_failure = Counter(
            "kvbench_get_failure", "Count of failed GET operations", labels, registry=self.registry
        )
        self.put_response_time = Summary(
            "kvbench_put_response_time_seconds", "Latency of PUT operations", labels, registry=self.registry
        )
        self.get_response_time = Summary(
            "kvbench_get_response_time_seconds", "Latency of GET operations", labels, registry=self.registry
        )

        self._derived = {
            "average_put_latency": Gauge(
                "kvbench_put_average_latency_ms",
                "Average latency of successful PUT operations in milliseconds",
                labels,
                registry=self.registry,
            ),
            "average_get_latency": Gauge(
                "kvbench_get_average_latency_ms",
                "Average latency of successful GET operations in milliseconds",
                labels,
                registry=self.registry,
            ),
            "overall_average_response_time": Gauge(
                "kvbench_average_response_time_ms",
                "Average response time over PUT and GET operations in milliseconds",
                labels,
                registry=self.registry,
            ),
            "transactions_per_second": Gauge(
                "kvbench_transactions_per_second",
                "Successful operations per second of store time",
                labels,
                registry=self.registry,
            ),
            "total_error_rate": Gauge(
                "kvbench_total_error_rate_percent",
                "Total error rate for PUT and GET operations in percentage",
                labels,
                registry=self.registry,
            ),
            "max_put_latency": Gauge(
                "kvbench_put_max_latency_ms",
                "Largest single PUT latency in milliseconds",
                labels,
                registry=self.registry,
            ),
            "max_get_latency": Gauge(
                "kvbench_get_max_latency_ms",
                "Largest single GET latency in milliseconds",
                labels,
                registry=self.registry,
            ),
            "total_successful_operations": Gauge(
                "kvbench_total_successful_operations",
                "Successful PUT and GET operations",
                labels,
                registry=self.registry,
            ),
        }

    def start(self, port: int, addr: str = "0.0.0.0") -> None:
        try:
            start_http_server(port, addr=addr, registry=self.registry)
        except OSError as exc:
            raise ConfigurationError(f"cannot serve metrics on port {port}: {exc}") from exc
        LOGGER.info("Prometheus metrics available on port %d", port)

    def attach(self, collector: MetricsCollector) -> None:
        scenario_id = collector.scenario_id
        collector.add_mirror(_ScenarioMirror(self, scenario_id))
        for attribute, gauge in self._derived.items():
            gauge.labels(scenario=scenario_id).set_function(
                lambda attribute=attribute: getattr(collector, attribute)
            )
        LOGGER.debug("Exporting metrics for %s", scenario_id)


__all__ = ["PrometheusExporter"]
