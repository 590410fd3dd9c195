"""Report tables, CSV/chart files and the manifest."""

import json

from kvbench.collector import MetricsCollector
from kvbench.config import (
    CONNECTION_POOL_GROUP,
    BenchmarkBatch,
    BenchmarkPlan,
    KeyStrategy,
    PayloadSpec,
    Scenario,
)
from kvbench.report import COLUMNS, build_group_tables, scenario_label, write_report
from kvbench.runner import RunSummary


def thread_pool_collector(scenario_id="Scenario 1", key_strategy=KeyStrategy.UNIQUE):
    collector = MetricsCollector(scenario_id, 5, "big", "25kb", key_strategy)
    collector.increment_put_success()
    collector.record_put_latency(4.0)
    for _ in range(3):
        collector.increment_get_success()
        collector.record_get_latency(2.0)
    return collector


def pool_collector(scenario_id="Scenario 13", pool_size=5):
    collector = MetricsCollector(
        scenario_id, 10, "big", "25kb", KeyStrategy.UNIQUE, pool_size=pool_size, group=CONNECTION_POOL_GROUP
    )
    collector.increment_put_failure()
    collector.record_put_latency(1.0)
    return collector


def test_labels():
    assert scenario_label(thread_pool_collector()) == "Scenario 1: threads=5, 25kb, unique keys"
    assert (
        scenario_label(thread_pool_collector("Scenario 2", KeyStrategy.SHARED))
        == "Scenario 2: threads=5, 25kb, shared key"
    )
    assert scenario_label(pool_collector()) == "Scenario 13: connections=5, threads=10"


def test_tables_grouped_by_matrix(registry):
    registry.put("Scenario 1", thread_pool_collector())
    registry.put("Scenario 13", pool_collector())
    registry.put("Scenario 2", thread_pool_collector("Scenario 2", KeyStrategy.SHARED))

    tables = build_group_tables(registry)

    assert list(tables) == ["thread-pool", CONNECTION_POOL_GROUP]
    thread_pool = tables["thread-pool"]
    assert list(thread_pool.columns) == COLUMNS
    assert thread_pool["Scenario"].str.split(":").str[0].tolist() == ["Scenario 1", "Scenario 2"]
    row = thread_pool.iloc[0]
    assert row["Total Successful Operations"] == 4
    assert row["Total Error Rate (%)"] == 0
    assert row["Average PUT Latency (ms)"] == 4.0
    assert row["Average GET Latency (ms)"] == 2.0
    assert row["Overall Average Response Time (ms)"] == 2.5
    assert row["Transactions Per Second (TPS)"] == 400.0

    pool_row = tables[CONNECTION_POOL_GROUP].iloc[0]
    assert pool_row["Total Error Rate (%)"] == 100.0
    assert pool_row["Transactions Per Second (TPS)"] == 0.0


def test_empty_registry_has_no_tables(registry):
    assert build_group_tables(registry) == {}


def test_write_report(registry, tmp_path, caplog):
    payload = PayloadSpec("big", "big.json", "25kb")
    planned = [
        Scenario("Scenario 1", 5, payload, KeyStrategy.UNIQUE),
        Scenario("Scenario 2", 5, payload, KeyStrategy.SHARED),
        Scenario("Scenario 13", 10, payload, KeyStrategy.UNIQUE, pool_size=5, group=CONNECTION_POOL_GROUP),
    ]
    plan = BenchmarkPlan(
        batches=[
            BenchmarkBatch("thread-pool", "thread-pool", planned[:2]),
            BenchmarkBatch("connection-pool-5", CONNECTION_POOL_GROUP, planned[2:], pool_size=5),
        ]
    )
    registry.put("Scenario 1", thread_pool_collector())
    registry.put("Scenario 13", pool_collector())
    summary = RunSummary(completed=["Scenario 1", "Scenario 13"], skipped=["Scenario 2"])

    manifest_path = write_report(registry, plan, summary, tmp_path / "out")

    manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    assert manifest["skipped"] == ["Scenario 2"]
    assert manifest["completed"] == ["Scenario 1", "Scenario 13"]
    assert set(manifest["groups"]) == {"thread-pool", CONNECTION_POOL_GROUP}
    for entry in manifest["groups"].values():
        assert (tmp_path / "out").joinpath(entry["table"]).exists()
        assert (tmp_path / "out").joinpath(entry["chart"]).exists()
    assert (tmp_path / "out" / "raw_metrics.csv").exists()
    assert "No metrics found for Scenario 2" in caplog.text
