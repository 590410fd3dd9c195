"""Counters, timers, derived statistics and the registry."""

import threading

import pytest
from hypothesis import given
from hypothesis import strategies as st

from kvbench.collector import MetricsCollector, MetricsRegistry
from kvbench.config import CONNECTION_POOL_GROUP, KeyStrategy


def make_collector(scenario_id="Scenario 1", **kwargs):
    defaults = {
        "thread_count": 5,
        "payload_label": "big",
        "payload_size": "25kb",
        "key_strategy": KeyStrategy.UNIQUE,
    }
    defaults.update(kwargs)
    return MetricsCollector(scenario_id, **defaults)


def fill(collector, put_ok=0, put_failed=0, get_ok=0, get_failed=0, put_ms=(), get_ms=()):
    for _ in range(put_ok):
        collector.increment_put_success()
    for _ in range(put_failed):
        collector.increment_put_failure()
    for _ in range(get_ok):
        collector.increment_get_success()
    for _ in range(get_failed):
        collector.increment_get_failure()
    for duration in put_ms:
        collector.record_put_latency(duration)
    for duration in get_ms:
        collector.record_get_latency(duration)
    return collector


def test_empty_collector_derives_zeroes():
    collector = make_collector()

    assert collector.average_put_latency == 0
    assert collector.average_get_latency == 0
    assert collector.overall_average_response_time == 0
    assert collector.transactions_per_second == 0
    assert collector.total_error_rate == 0
    assert collector.total_successful_operations == 0
    assert collector.max_put_latency == 0


def test_derived_statistics():
    collector = fill(
        make_collector(),
        put_ok=2,
        put_failed=1,
        get_ok=6,
        get_failed=1,
        put_ms=(10.0, 20.0, 30.0),
        get_ms=(5.0,) * 7,
    )

    assert collector.average_put_latency == pytest.approx(60.0 / 2)
    assert collector.average_get_latency == pytest.approx(35.0 / 6)
    assert collector.overall_average_response_time == pytest.approx(95.0 / 8)
    assert collector.transactions_per_second == pytest.approx(8 / 0.095)
    assert collector.total_error_rate == pytest.approx(20.0)
    assert collector.total_successful_operations == 8
    assert collector.max_put_latency == 30.0
    assert collector.max_get_latency == 5.0


def test_average_put_latency_without_successes_is_zero():
    collector = fill(make_collector(), put_failed=3, put_ms=(4.0, 4.0, 4.0))

    assert collector.average_put_latency == 0
    assert collector.total_error_rate == 100.0


@given(
    st.integers(min_value=0, max_value=500),
    st.integers(min_value=0, max_value=500),
    st.integers(min_value=0, max_value=500),
    st.integers(min_value=0, max_value=500),
    st.lists(st.floats(min_value=0, max_value=1e4, allow_nan=False), max_size=20),
)
def test_derived_values_stay_in_bounds(put_ok, put_failed, get_ok, get_failed, put_ms):
    collector = fill(
        make_collector(),
        put_ok=put_ok,
        put_failed=put_failed,
        get_ok=get_ok,
        get_failed=get_failed,
        put_ms=put_ms,
    )

    assert 0.0 <= collector.total_error_rate <= 100.0
    if put_ok + put_failed + get_ok + get_failed == 0:
        assert collector.total_error_rate == 0.0
    if put_ok == 0:
        assert collector.average_put_latency == 0.0
    else:
        assert collector.average_put_latency == collector.put_timer.total_ms / put_ok
    assert collector.transactions_per_second >= 0.0


def test_concurrent_updates_are_not_lost():
    collector = make_collector()
    threads = 16
    per_thread = 1000

    def hammer():
        for _ in range(per_thread):
            collector.increment_put_success()
            collector.increment_get_failure()
            collector.record_put_latency(1.0)

    workers = [threading.Thread(target=hammer) for _ in range(threads)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    expected = threads * per_thread
    assert collector.put_success_count == expected
    assert collector.get_failure_count == expected
    assert collector.put_timer.count == expected
    assert collector.put_timer.total_ms == pytest.approx(float(expected))


def test_negative_durations_are_clamped():
    collector = fill(make_collector(), put_ms=(-5.0,))

    assert collector.put_timer.total_ms == 0.0
    assert collector.put_timer.count == 1


def test_snapshot_carries_labels():
    collector = make_collector(
        "Scenario 14",
        pool_size=10,
        group=CONNECTION_POOL_GROUP,
        thread_count=10,
    )
    fill(collector, put_ok=1, get_ok=3, put_ms=(2.0,), get_ms=(1.0, 1.0, 1.0))

    snapshot = collector.snapshot()

    assert snapshot["scenario_id"] == "Scenario 14"
    assert snapshot["group"] == CONNECTION_POOL_GROUP
    assert snapshot["pool_size"] == 10
    assert snapshot["key_strategy"] == "unique"
    assert snapshot["total_successful_operations"] == 4
    assert snapshot["average_get_latency_ms"] == pytest.approx(1.0)


def test_registry_keeps_insertion_order():
    registry = MetricsRegistry()
    collectors = [make_collector(f"Scenario {n}") for n in (3, 1, 2)]
    for collector in collectors:
        assert registry.put(collector.scenario_id, collector)

    assert [scenario_id for scenario_id, _ in registry.all()] == ["Scenario 3", "Scenario 1", "Scenario 2"]
    assert len(registry) == 3
    assert "Scenario 1" in registry
    assert registry.get("Scenario 2") is collectors[2]
    assert registry.get("Scenario 9") is None


def test_registry_rejects_duplicates(caplog):
    registry = MetricsRegistry()
    first = make_collector()
    second = make_collector()

    assert registry.put("Scenario 1", first)
    assert not registry.put("Scenario 1", second)

    assert registry.get("Scenario 1") is first
    assert len(registry) == 1
    assert "already registered" in caplog.text
