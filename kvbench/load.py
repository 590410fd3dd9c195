from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterator

from .collector import MetricsCollector, MetricsRegistry
from .config import DEFAULT_MAX_IN_FLIGHT_PER_WORKER, KeyStrategy, Scenario
from .errors import ConfigurationError, ErrorKind, classify_error
from .store import StoreClient, load_payload

if TYPE_CHECKING:
    from .exporter import PrometheusExporter

LOGGER = logging.getLogger("kvbench.load")

SHARED_KEY = "user::shared"
READS_PER_WRITE = 3
PUT = "put"
GET = "get"


class KeyGenerator:
    """Per-operation keys; unique keys embed worker id, sequence and wall clock."""

    def __init__(self, strategy: KeyStrategy, clock: Callable[[], float] = time.time) -> None:
        self._strategy = strategy
        self._clock = clock
        self._sequences: dict[int, Iterator[int]] = {}
        self._lock = threading.Lock()

    def next_key(self, worker_id: int) -> str:
        if self._strategy is KeyStrategy.SHARED:
            return SHARED_KEY
        with self._lock:
            sequence = self._sequences.setdefault(worker_id, itertools.count(start=1))
            number = next(sequence)
        timestamp_ms = int(self._clock() * 1000)
        return f"user::{worker_id}::{number}::{timestamp_ms}"


@dataclass(frozen=True)
class OperationOutcome:
    operation: str
    key: str
    duration_ms: float
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> ErrorKind | None:
        if self.error is None:
            return None
        return classify_error(self.error)


@dataclass
class LoadStatistics:
    scenario_id: str
    chains_launched: int
    started_at: float
    finished_at: float
    registered: bool = False

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)


class _ChainTracker:
    """Counts in-flight chains so the executor can wait for all of them."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._pending = 0
        self._launched = 0

    def launched(self) -> None:
        with self._condition:
            self._pending += 1
            self._launched += 1

    def resolved(self) -> None:
        with self._condition:
            self._pending -= 1
            if self._pending == 0:
                self._condition.notify_all()

    def wait(self) -> None:
        with self._condition:
            self._condition.wait_for(lambda: self._pending == 0)

    @property
    def total_launched(self) -> int:
        with self._condition:
            return self._launched


class LoadTestExecutor:
    """Runs one scenario: workers launch write/read chains until the test duration elapses."""

    def __init__(
        self,
        store: StoreClient,
        registry: MetricsRegistry,
        test_duration_s: float,
        max_in_flight_per_worker: int | None = DEFAULT_MAX_IN_FLIGHT_PER_WORKER,
        chain_workers: int | None = None,
        payload_loader: Callable[[str], dict[str, Any]] = load_payload,
        clock: Callable[[], float] = time.monotonic,
        exporter: "PrometheusExporter | None" = None,
    ) -> None:
        if test_duration_s < 0:
            raise ValueError("test_duration_s must be >= 0")
        self._store = store
        self._registry = registry
        self._test_duration_s = test_duration_s
        self._max_in_flight = max_in_flight_per_worker or None
        self._chain_workers = chain_workers
        self._payload_loader = payload_loader
        self._clock = clock
        self._exporter = exporter
        self.last_statistics: LoadStatistics | None = None

    def run(self, scenario: Scenario) -> MetricsCollector:
        if scenario.thread_count < 1:
            raise ConfigurationError(
                f"{scenario.scenario_id} needs at least one thread, got {scenario.thread_count}"
            )
        LOGGER.info(
            "Starting %s with %d threads using %s (payload=%s)",
            scenario.scenario_id,
            scenario.thread_count,
            scenario.key_strategy.description,
            scenario.payload.label,
        )
        # Either failure aborts the scenario before anything is registered.
        document = self._payload_loader(scenario.payload.path)
        self._store.check()

        collector = MetricsCollector.for_scenario(scenario)
        if self._exporter is not None:
            self._exporter.attach(collector)
        keys = KeyGenerator(scenario.key_strategy)
        tracker = _ChainTracker()
        started_at = time.time()

        chain_pool = ThreadPoolExecutor(
            max_workers=self._chain_workers
            or chain_pool_size(scenario.thread_count, self._max_in_flight),
            thread_name_prefix=f"{_slug(scenario.scenario_id)}-chain",
        )
        try:
            with ThreadPoolExecutor(
                max_workers=scenario.thread_count,
                thread_name_prefix=f"{_slug(scenario.scenario_id)}-worker",
            ) as workers:
                worker_futures = [
                    workers.submit(
                        self._worker_loop,
                        worker_id,
                        document,
                        collector,
                        keys,
                        chain_pool,
                        tracker,
                    )
                    for worker_id in range(1, scenario.thread_count + 1)
                ]
            for future in worker_futures:
                future.result()
            LOGGER.info(
                "%s: workers stopped launching; draining %d chain(s)",
                scenario.scenario_id,
                tracker.total_launched,
            )
            tracker.wait()
        finally:
            chain_pool.shutdown(wait=True)

        self.last_statistics = LoadStatistics(
            scenario_id=scenario.scenario_id,
            chains_launched=tracker.total_launched,
            started_at=started_at,
            finished_at=time.time(),
        )
        LOGGER.info(
            "%s completed in %.1fs: %d chains, %d successful operations, error rate %.2f%%",
            scenario.scenario_id,
            self.last_statistics.duration_s,
            tracker.total_launched,
            collector.total_successful_operations,
            collector.total_error_rate,
        )
        self.last_statistics.registered = self._registry.put(scenario.scenario_id, collector)
        return collector

    def _worker_loop(
        self,
        worker_id: int,
        document: dict[str, Any],
        collector: MetricsCollector,
        keys: KeyGenerator,
        chain_pool: ThreadPoolExecutor,
        tracker: _ChainTracker,
    ) -> None:
        LOGGER.debug("Worker %d starting operations", worker_id)
        in_flight = threading.BoundedSemaphore(self._max_in_flight) if self._max_in_flight else None
        started = self._clock()

        while self._clock() - started <= self._test_duration_s:
            key = keys.next_key(worker_id)
            if in_flight is not None:
                in_flight.acquire()
            tracker.launched()
            future = chain_pool.submit(self._run_chain, worker_id, key, document, collector)
            future.add_done_callback(_chain_done(tracker, in_flight, worker_id, key))

        LOGGER.debug("Worker %d stopped launching chains", worker_id)

    def _run_chain(
        self,
        worker_id: int,
        key: str,
        document: dict[str, Any],
        collector: MetricsCollector,
    ) -> None:
        outcome = self._attempt(PUT, key, lambda: self._store.put(key, document))
        _record(collector, outcome)
        if not outcome.ok:
            _log_failure(worker_id, outcome)
            return
        LOGGER.debug("Worker %d: uploaded data for key %s", worker_id, key)

        for attempt in range(1, READS_PER_WRITE + 1):
            outcome = self._attempt(GET, key, lambda: self._store.get(key))
            _record(collector, outcome)
            if not outcome.ok:
                _log_failure(worker_id, outcome, attempt)
                return
        LOGGER.debug("Worker %d: retrieved data for key %s", worker_id, key)

    @staticmethod
    def _attempt(operation: str, key: str, call: Callable[[], object]) -> OperationOutcome:
        started = time.perf_counter()
        error: Exception | None = None
        try:
            call()
        except Exception as exc:  # noqa: BLE001
            error = exc
        duration_ms = (time.perf_counter() - started) * 1000.0
        return OperationOutcome(operation=operation, key=key, duration_ms=duration_ms, error=error)


def _record(collector: MetricsCollector, outcome: OperationOutcome) -> None:
    if outcome.operation == PUT:
        collector.record_put_latency(outcome.duration_ms)
        if outcome.ok:
            collector.increment_put_success()
        else:
            collector.increment_put_failure()
    else:
        collector.record_get_latency(outcome.duration_ms)
        if outcome.ok:
            collector.increment_get_success()
        else:
            collector.increment_get_failure()


def _log_failure(worker_id: int, outcome: OperationOutcome, attempt: int | None = None) -> None:
    where = outcome.operation if attempt is None else f"{outcome.operation} attempt {attempt}"
    if outcome.error_kind is ErrorKind.UNEXPECTED:
        LOGGER.error(
            "Worker %d: unexpected error during %s for key %s",
            worker_id,
            where,
            outcome.key,
            exc_info=outcome.error,
        )
    else:
        LOGGER.warning(
            "Worker %d: store error during %s for key %s: %s",
            worker_id,
            where,
            outcome.key,
            outcome.error,
        )


def _chain_done(
    tracker: _ChainTracker,
    in_flight: threading.BoundedSemaphore | None,
    worker_id: int,
    key: str,
) -> Callable[[Future], None]:
    def callback(future: Future) -> None:
        try:
            exc = future.exception()
            if exc is not None:
                LOGGER.error(
                    "Worker %d: chain for key %s crashed", worker_id, key, exc_info=exc
                )
        finally:
            if in_flight is not None:
                in_flight.release()
            tracker.resolved()

    return callback


def chain_pool_size(thread_count: int, max_in_flight_per_worker: int | None) -> int:
    """Threads needed so every in-flight chain of every worker can run at once.

    Unbounded fan-out has no such number; it gets four threads per worker and
    the rest of the chains wait in the pool's queue.
    """
    if max_in_flight_per_worker:
        return thread_count * max_in_flight_per_worker
    return max(thread_count * 4, 4)


def _slug(scenario_id: str) -> str:
    return scenario_id.lower().replace(" ", "-")


__all__ = [
    "chain_pool_size",
    "KeyGenerator",
    "LoadStatistics",
    "LoadTestExecutor",
    "OperationOutcome",
    "READS_PER_WRITE",
    "SHARED_KEY",
]
