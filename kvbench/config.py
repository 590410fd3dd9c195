from __future__ import annotations

import argparse
import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

from .errors import ConfigurationError

LOGGER = logging.getLogger("kvbench.config")

THREAD_POOL_GROUP = "thread-pool"
CONNECTION_POOL_GROUP = "connection-pool"

DEFAULT_THREAD_COUNTS: tuple[int, ...] = (5, 10, 15)
DEFAULT_POOL_SIZES: tuple[int, ...] = (5, 10, 15)
DEFAULT_POOL_THREAD_COUNT = 10
DEFAULT_TEST_DURATION_MS = 180_000
DEFAULT_MAX_IN_FLIGHT_PER_WORKER = 8


class KeyStrategy(enum.Enum):
    UNIQUE = "unique"
    SHARED = "shared"

    @property
    def description(self) -> str:
        return "unique keys" if self is KeyStrategy.UNIQUE else "shared key"


@dataclass(frozen=True)
class PayloadSpec:
    """Reference to a JSON document written by every chain of a scenario."""

    label: str
    path: str
    size_label: str


@dataclass(frozen=True)
class Scenario:
    scenario_id: str
    thread_count: int
    payload: PayloadSpec
    key_strategy: KeyStrategy
    pool_size: int | None = None
    group: str = THREAD_POOL_GROUP


@dataclass(frozen=True)
class BenchmarkBatch:
    """Scenarios that share one store client configuration."""

    label: str
    group: str
    scenarios: Sequence[Scenario]
    pool_size: int | None = None


@dataclass
class BenchmarkPlan:
    batches: list[BenchmarkBatch] = field(default_factory=list)

    def __iter__(self) -> Iterator[BenchmarkBatch]:
        return iter(self.batches)

    def scenarios(self) -> list[Scenario]:
        return [scenario for batch in self.batches for scenario in batch.scenarios]


def scenario_id(number: int) -> str:
    return f"Scenario {number}"


def build_thread_pool_scenarios(
    thread_counts: Iterable[int],
    payloads: Iterable[PayloadSpec],
    key_strategies: Iterable[KeyStrategy] = (KeyStrategy.UNIQUE, KeyStrategy.SHARED),
    start: int = 1,
) -> list[Scenario]:
    """Cross product ordered thread count, then payload, then key strategy.

    Thread counts below one are dropped with a warning.
    """

    payloads = list(payloads)
    key_strategies = list(key_strategies)
    scenarios: list[Scenario] = []
    number = start
    for thread_count in _positive(thread_counts, "thread count"):
        for payload in payloads:
            for strategy in key_strategies:
                scenarios.append(
                    Scenario(
                        scenario_id=scenario_id(number),
                        thread_count=thread_count,
                        payload=payload,
                        key_strategy=strategy,
                        group=THREAD_POOL_GROUP,
                    )
                )
                number += 1
    return scenarios


def build_connection_pool_scenarios(
    pool_sizes: Iterable[int],
    payload: PayloadSpec,
    thread_count: int = DEFAULT_POOL_THREAD_COUNT,
    start: int = 1,
) -> list[Scenario]:
    if thread_count < 1:
        LOGGER.warning("Ignoring connection-pool matrix with thread count %r", thread_count)
        return []
    return [
        Scenario(
            scenario_id=scenario_id(number),
            thread_count=thread_count,
            payload=payload,
            key_strategy=KeyStrategy.UNIQUE,
            pool_size=pool_size,
            group=CONNECTION_POOL_GROUP,
        )
        for number, pool_size in enumerate(_positive(pool_sizes, "pool size"), start=start)
    ]


def _positive(values: Iterable[int], name: str) -> list[int]:
    kept = []
    for value in values:
        if isinstance(value, int) and not isinstance(value, bool) and value >= 1:
            kept.append(value)
        else:
            LOGGER.warning("Ignoring invalid %s %r", name, value)
    return kept


def default_benchmark_plan(big_payload: PayloadSpec, small_payload: PayloadSpec) -> BenchmarkPlan:
    """Return the default suite: 12 thread-pool scenarios then 3 connection-pool ones."""

    thread_pool = build_thread_pool_scenarios(
        DEFAULT_THREAD_COUNTS,
        (big_payload, small_payload),
    )
    connection_pool = build_connection_pool_scenarios(
        DEFAULT_POOL_SIZES,
        big_payload,
        start=len(thread_pool) + 1,
    )

    batches = [
        BenchmarkBatch(label=THREAD_POOL_GROUP, group=THREAD_POOL_GROUP, scenarios=thread_pool),
    ]
    # A pool size is a client property, so every size gets its own batch.
    batches.extend(
        BenchmarkBatch(
            label=f"{CONNECTION_POOL_GROUP}-{scenario.pool_size}",
            group=CONNECTION_POOL_GROUP,
            scenarios=[scenario],
            pool_size=scenario.pool_size,
        )
        for scenario in connection_pool
    )
    return BenchmarkPlan(batches=batches)


@dataclass(frozen=True)
class Settings:
    store_url: str
    bucket: str
    json_big_path: str
    json_small_path: str
    output_dir: str
    store_username: str | None = None
    store_password: str | None = None
    test_duration_ms: int = DEFAULT_TEST_DURATION_MS
    max_in_flight_per_worker: int | None = DEFAULT_MAX_IN_FLIGHT_PER_WORKER
    socket_timeout: float | None = None
    metrics_port: int | None = None

    @property
    def test_duration_s(self) -> float:
        return self.test_duration_ms / 1000.0

    @classmethod
    def from_namespace(cls, args: argparse.Namespace) -> "Settings":
        max_in_flight = _parse_int(args.max_in_flight, "MAX_IN_FLIGHT_PER_WORKER", minimum=0)
        return cls(
            store_url=_require(args.store_url, "KV_STORE_URL"),
            bucket=_require(args.bucket, "KV_STORE_BUCKET"),
            json_big_path=_require(args.json_big_path, "JSON_BIG_PATH"),
            json_small_path=_require(args.json_small_path, "JSON_SMALL_PATH"),
            output_dir=_require(args.output_dir, "BENCHMARK_OUTPUT_DIR"),
            store_username=args.store_username or None,
            store_password=args.store_password or None,
            test_duration_ms=_parse_int(args.duration_ms, "LOAD_TEST_DURATION_MS", minimum=1),
            max_in_flight_per_worker=max_in_flight or None,
            socket_timeout=_parse_float(args.socket_timeout, "KV_STORE_SOCKET_TIMEOUT"),
            metrics_port=_parse_port(args.metrics_port, "METRICS_PORT"),
        )

    def payloads(self) -> tuple[PayloadSpec, PayloadSpec]:
        return (
            PayloadSpec(label="big", path=self.json_big_path, size_label="25kb"),
            PayloadSpec(label="small", path=self.json_small_path, size_label="1kb"),
        )


def _require(value: str | None, variable: str) -> str:
    if value is None or not str(value).strip():
        raise ConfigurationError(f"Environment variable {variable} not set or empty")
    return str(value).strip()


def _parse_int(value: str | int, variable: str, minimum: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{variable} must be an integer, got {value!r}") from exc
    if parsed < minimum:
        raise ConfigurationError(f"{variable} must be >= {minimum}, got {parsed}")
    return parsed


def _parse_port(value: str | int | None, variable: str) -> int | None:
    if value is None or value == "":
        return None
    port = _parse_int(value, variable, minimum=1)
    if port > 65535:
        raise ConfigurationError(f"{variable} must be a TCP port, got {port}")
    return port


def _parse_float(value: str | float | None, variable: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{variable} must be a number, got {value!r}") from exc
    if parsed <= 0:
        raise ConfigurationError(f"{variable} must be > 0, got {parsed}")
    return parsed
