from __future__ import annotations

import logging
import threading
from typing import Any, Iterator

from .config import THREAD_POOL_GROUP, KeyStrategy, Scenario

LOGGER = logging.getLogger("kvbench.collector")


class Counter:
    """Monotonic counter safe to increment from any thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> None:
        with self._lock:
            self._value += 1

    @property
    def count(self) -> int:
        with self._lock:
            return self._value


class Timer:
    """Accumulated duration, sample count and max, updated together."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_ms = 0.0
        self._count = 0
        self._max_ms = 0.0

    def record(self, duration_ms: float) -> None:
        duration_ms = max(float(duration_ms), 0.0)
        with self._lock:
            self._total_ms += duration_ms
            self._count += 1
            if duration_ms > self._max_ms:
                self._max_ms = duration_ms

    def snapshot(self) -> tuple[float, int, float]:
        with self._lock:
            return self._total_ms, self._count, self._max_ms

    @property
    def total_ms(self) -> float:
        return self.snapshot()[0]

    @property
    def count(self) -> int:
        return self.snapshot()[1]

    @property
    def max_ms(self) -> float:
        return self.snapshot()[2]


class MetricsCollector:
    """Counters and timers for one scenario, with statistics derived on read."""

    def __init__(
        self,
        scenario_id: str,
        thread_count: int,
        payload_label: str,
        payload_size: str,
        key_strategy: KeyStrategy,
        pool_size: int | None = None,
        group: str = THREAD_POOL_GROUP,
    ) -> None:
        LOGGER.info("Starting collection of metrics for %s", scenario_id)
        self.scenario_id = scenario_id
        self.thread_count = thread_count
        self.payload_label = payload_label
        self.payload_size = payload_size
        self.key_strategy = key_strategy
        self.pool_size = pool_size
        self.group = group

        self._put_success = Counter()
        self._put_failure = Counter()
        self._get_success = Counter()
        self._get_failure = Counter()
        self.put_timer = Timer()
        self.get_timer = Timer()
        self._mirrors: list[Any] = []

    @classmethod
    def for_scenario(cls, scenario: Scenario) -> "MetricsCollector":
        return cls(
            scenario_id=scenario.scenario_id,
            thread_count=scenario.thread_count,
            payload_label=scenario.payload.label,
            payload_size=scenario.payload.size_label,
            key_strategy=scenario.key_strategy,
            pool_size=scenario.pool_size,
            group=scenario.group,
        )

    @property
    def unique_keys(self) -> bool:
        return self.key_strategy is KeyStrategy.UNIQUE

    def add_mirror(self, mirror: Any) -> None:
        """Forward every later update to ``mirror``; call before workers start."""
        self._mirrors.append(mirror)

    def increment_put_success(self) -> None:
        self._put_success.increment()
        for mirror in self._mirrors:
            mirror.increment_put_success()

    def increment_put_failure(self) -> None:
        self._put_failure.increment()
        for mirror in self._mirrors:
            mirror.increment_put_failure()

    def increment_get_success(self) -> None:
        self._get_success.increment()
        for mirror in self._mirrors:
            mirror.increment_get_success()

    def increment_get_failure(self) -> None:
        self._get_failure.increment()
        for mirror in self._mirrors:
            mirror.increment_get_failure()

    def record_put_latency(self, duration_ms: float) -> None:
        self.put_timer.record(duration_ms)
        for mirror in self._mirrors:
            mirror.record_put_latency(duration_ms)

    def record_get_latency(self, duration_ms: float) -> None:
        self.get_timer.record(duration_ms)
        for mirror in self._mirrors:
            mirror.record_get_latency(duration_ms)

    @property
    def put_success_count(self) -> int:
        return self._put_success.count

    @property
    def put_failure_count(self) -> int:
        return self._put_failure.count

    @property
    def get_success_count(self) -> int:
        return self._get_success.count

    @property
    def get_failure_count(self) -> int:
        return self._get_failure.count

    @property
    def average_put_latency(self) -> float:
        successes = self.put_success_count
        if successes == 0:
            return 0.0
        return self.put_timer.total_ms / successes

    @property
    def average_get_latency(self) -> float:
        successes = self.get_success_count
        if successes == 0:
            return 0.0
        return self.get_timer.total_ms / successes

    @property
    def overall_average_response_time(self) -> float:
        successes = self.total_successful_operations
        if successes == 0:
            return 0.0
        return (self.put_timer.total_ms + self.get_timer.total_ms) / successes

    @property
    def transactions_per_second(self) -> float:
        total_seconds = (self.put_timer.total_ms + self.get_timer.total_ms) / 1000.0
        if total_seconds == 0:
            return 0.0
        return self.total_successful_operations / total_seconds

    @property
    def total_error_rate(self) -> float:
        failures = self.put_failure_count + self.get_failure_count
        attempts = self.total_successful_operations + failures
        if attempts == 0:
            return 0.0
        return failures / attempts * 100.0

    @property
    def total_successful_operations(self) -> int:
        return self.put_success_count + self.get_success_count

    @property
    def max_put_latency(self) -> float:
        return self.put_timer.max_ms

    @property
    def max_get_latency(self) -> float:
        return self.get_timer.max_ms

    def snapshot(self) -> dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "group": self.group,
            "thread_count": self.thread_count,
            "payload": self.payload_label,
            "payload_size": self.payload_size,
            "key_strategy": self.key_strategy.value,
            "pool_size": self.pool_size,
            "put_success": self.put_success_count,
            "put_failure": self.put_failure_count,
            "get_success": self.get_success_count,
            "get_failure": self.get_failure_count,
            "put_total_ms": self.put_timer.total_ms,
            "get_total_ms": self.get_timer.total_ms,
            "total_successful_operations": self.total_successful_operations,
            "total_error_rate": self.total_error_rate,
            "transactions_per_second": self.transactions_per_second,
            "average_put_latency_ms": self.average_put_latency,
            "average_get_latency_ms": self.average_get_latency,
            "overall_average_response_time_ms": self.overall_average_response_time,
            "max_put_latency_ms": self.max_put_latency,
            "max_get_latency_ms": self.max_get_latency,
        }

    def __repr__(self) -> str:
        return (
            f"MetricsCollector({self.scenario_id!r}, puts={self.put_success_count}/"
            f"{self.put_failure_count}, gets={self.get_success_count}/{self.get_failure_count})"
        )


class MetricsRegistry:
    """Completed scenarios' collectors, keyed by scenario id in insertion order."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, MetricsCollector] = {}

    def put(self, scenario_id: str, collector: MetricsCollector) -> bool:
        with self._lock:
            if scenario_id in self._entries:
                LOGGER.error(
                    "Metrics for %s are already registered; rejecting the new entry", scenario_id
                )
                return False
            self._entries[scenario_id] = collector
        LOGGER.info("Registered metrics for %s", scenario_id)
        return True

    def get(self, scenario_id: str) -> MetricsCollector | None:
        with self._lock:
            return self._entries.get(scenario_id)

    def all(self) -> list[tuple[str, MetricsCollector]]:
        with self._lock:
            return list(self._entries.items())

    def __contains__(self, scenario_id: object) -> bool:
        with self._lock:
            return scenario_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[tuple[str, MetricsCollector]]:
        return iter(self.all())
