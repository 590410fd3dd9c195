from __future__ import annotations

import argparse
import functools
import logging
import os
import sys
from pathlib import Path

from .collector import MetricsRegistry
from .config import (
    DEFAULT_MAX_IN_FLIGHT_PER_WORKER,
    DEFAULT_TEST_DURATION_MS,
    BenchmarkPlan,
    Settings,
    default_benchmark_plan,
)
from .errors import ConfigurationError
from .exporter import PrometheusExporter
from .report import write_report
from .runner import BenchmarkRunner
from .store import connect_store

LOGGER = logging.getLogger("kvbench.benchmark")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIGURATION = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Key-value store put/get benchmark")
    parser.add_argument(
        "--store-url",
        default=os.environ.get("KV_STORE_URL"),
        help="Store URL, e.g. redis://localhost:6379/0",
    )
    parser.add_argument("--store-username", default=os.environ.get("KV_STORE_USERNAME"))
    parser.add_argument("--store-password", default=os.environ.get("KV_STORE_PASSWORD"))
    parser.add_argument(
        "--bucket",
        default=os.environ.get("KV_STORE_BUCKET"),
        help="Namespace prefixed to every key written by the benchmark",
    )
    parser.add_argument(
        "--json-big-path",
        default=os.environ.get("JSON_BIG_PATH"),
        help="JSON document used by the large payload scenarios",
    )
    parser.add_argument(
        "--json-small-path",
        default=os.environ.get("JSON_SMALL_PATH"),
        help="JSON document used by the small payload scenarios",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("BENCHMARK_OUTPUT_DIR", "benchmark-results"),
        help="Directory to store benchmark artefacts (tables, charts and manifest)",
    )
    parser.add_argument(
        "--duration-ms",
        default=os.environ.get("LOAD_TEST_DURATION_MS", str(DEFAULT_TEST_DURATION_MS)),
        help="How long every worker keeps launching operations",
    )
    parser.add_argument(
        "--max-in-flight",
        default=os.environ.get("MAX_IN_FLIGHT_PER_WORKER", str(DEFAULT_MAX_IN_FLIGHT_PER_WORKER)),
        help="Bound on in-flight write/read chains per worker (0 for unbounded)",
    )
    parser.add_argument(
        "--socket-timeout",
        default=os.environ.get("KV_STORE_SOCKET_TIMEOUT"),
        help="Optional socket timeout in seconds for store calls",
    )
    parser.add_argument(
        "--metrics-port",
        default=os.environ.get("METRICS_PORT"),
        help="If set, expose Prometheus metrics on this port while the benchmark runs",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned scenarios without executing them",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("BENCHMARK_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        settings = Settings.from_namespace(args)
    except ConfigurationError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return EXIT_CONFIGURATION

    plan = default_benchmark_plan(*settings.payloads())
    output_dir = Path(settings.output_dir)

    LOGGER.info("Benchmark output directory: %s", output_dir)
    LOGGER.info("Store: %s (namespace=%s)", settings.store_url, settings.bucket)
    LOGGER.info("Test duration: %d ms per scenario", settings.test_duration_ms)

    if args.dry_run:
        _print_plan(plan, settings)
        return EXIT_OK

    registry = MetricsRegistry()
    exporter = None
    if settings.metrics_port:
        exporter = PrometheusExporter()
        try:
            exporter.start(settings.metrics_port)
        except ConfigurationError as exc:
            LOGGER.error("Invalid configuration: %s", exc)
            return EXIT_CONFIGURATION

    runner = BenchmarkRunner(
        plan=plan,
        client_factory=functools.partial(connect_store, settings),
        registry=registry,
        test_duration_s=settings.test_duration_s,
        max_in_flight_per_worker=settings.max_in_flight_per_worker,
        exporter=exporter,
    )
    summary = runner.run()
    write_report(registry, plan, summary, output_dir)

    if not summary.succeeded:
        LOGGER.warning(
            "Run finished with problems: %d scenario(s) completed, aborted batches: %s",
            len(summary.completed),
            ", ".join(summary.aborted_batches) or "<none>",
        )
        return EXIT_FAILED
    return EXIT_OK


def _print_plan(plan: BenchmarkPlan, settings: Settings) -> None:
    for batch in plan:
        pool = batch.pool_size if batch.pool_size else "default"
        print(f"Batch: {batch.label} (group={batch.group}, pool size={pool})")
        for scenario in batch.scenarios:
            print(
                f"  - {scenario.scenario_id}: threads={scenario.thread_count}, "
                f"payload={scenario.payload.label} ({scenario.payload.size_label}), "
                f"keys={scenario.key_strategy.value}, duration={settings.test_duration_ms}ms"
            )


if __name__ == "__main__":
    sys.exit(main())
