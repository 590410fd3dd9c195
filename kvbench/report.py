from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from .charts import render_group_chart
from .collector import MetricsCollector, MetricsRegistry
from .config import CONNECTION_POOL_GROUP, BenchmarkPlan
from .runner import RunSummary

LOGGER = logging.getLogger("kvbench.report")

COLUMNS = [
    "Scenario",
    "Total Successful Operations",
    "Total Error Rate (%)",
    "Transactions Per Second (TPS)",
    "Average PUT Latency (ms)",
    "Average GET Latency (ms)",
    "Overall Average Response Time (ms)",
]


def scenario_label(collector: MetricsCollector) -> str:
    if collector.group == CONNECTION_POOL_GROUP:
        return (
            f"{collector.scenario_id}: connections={collector.pool_size}, "
            f"threads={collector.thread_count}"
        )
    return (
        f"{collector.scenario_id}: threads={collector.thread_count}, "
        f"{collector.payload_size}, {collector.key_strategy.description}"
    )


def metrics_row(collector: MetricsCollector) -> dict[str, Any]:
    return {
        "Scenario": scenario_label(collector),
        "Total Successful Operations": collector.total_successful_operations,
        "Total Error Rate (%)": round(collector.total_error_rate, 2),
        "Transactions Per Second (TPS)": round(collector.transactions_per_second, 2),
        "Average PUT Latency (ms)": round(collector.average_put_latency, 2),
        "Average GET Latency (ms)": round(collector.average_get_latency, 2),
        "Overall Average Response Time (ms)": round(collector.overall_average_response_time, 2),
    }


def build_group_tables(registry: MetricsRegistry) -> dict[str, pd.DataFrame]:
    """One table per scenario group, rows in registration order."""

    rows: dict[str, list[dict[str, Any]]] = {}
    for _, collector in registry.all():
        rows.setdefault(collector.group, []).append(metrics_row(collector))
    return {group: pd.DataFrame(group_rows, columns=COLUMNS) for group, group_rows in rows.items()}


def write_report(
    registry: MetricsRegistry,
    plan: BenchmarkPlan,
    summary: RunSummary,
    output_dir: Path,
) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)

    for scenario in plan.scenarios():
        if scenario.scenario_id not in registry:
            LOGGER.warning("No metrics found for %s; it is left out of the report", scenario.scenario_id)

    groups: dict[str, dict[str, Any]] = {}
    for group, table in build_group_tables(registry).items():
        csv_path = output_dir / f"{group}__metrics.csv"
        table.to_csv(csv_path, index=False)
        LOGGER.info("Saved %s results to %s (%d rows)", group, csv_path, len(table))
        chart_path = render_group_chart(group, table, output_dir)
        groups[group] = {
            "table": str(csv_path),
            "chart": str(chart_path),
            "scenarios": table["Scenario"].tolist(),
        }

    raw_path = output_dir / "raw_metrics.csv"
    pd.DataFrame([collector.snapshot() for _, collector in registry.all()]).to_csv(raw_path, index=False)

    manifest = {
        "groups": groups,
        "raw_metrics": str(raw_path),
        **summary.to_dict(),
    }
    manifest_path = output_dir / "benchmark_manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    LOGGER.info("Benchmark manifest written to %s", manifest_path)
    return manifest_path
