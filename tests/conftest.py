"""
Pytest configuration and fixtures for the kvbench test suite.

Stores are in-process stubs so no key-value server is needed.
"""

from __future__ import annotations

import json
import threading
import time

import matplotlib

matplotlib.use("Agg")

import pytest
from hypothesis import settings, Verbosity

from kvbench.collector import MetricsRegistry
from kvbench.config import KeyStrategy, PayloadSpec, Scenario
from kvbench.errors import ConnectivityError, DocumentNotFoundError, OperationError
from kvbench.store import StoreClient

settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)


def pytest_configure(config):
    settings.load_profile("default")


class StubStore(StoreClient):
    """Thread-safe fake store that records every call it receives."""

    def __init__(
        self,
        latency_s: float = 0.0,
        fail_puts: bool = False,
        get_error: Exception | None = None,
        check_error: Exception | None = None,
        checks_before_failure: int | None = None,
    ) -> None:
        self.latency_s = latency_s
        self.fail_puts = fail_puts
        self.get_error = get_error
        self.check_error = check_error
        self.checks_before_failure = checks_before_failure

        self._lock = threading.Lock()
        self.documents: dict[str, dict] = {}
        self.put_calls = 0
        self.get_calls = 0
        self.check_calls = 0
        self.active = 0
        self.max_active = 0
        self.closed = False

    def put(self, key, document):
        with self._tracked():
            with self._lock:
                self.put_calls += 1
            if self.fail_puts:
                raise OperationError(f"put rejected for {key}", key=key)
            with self._lock:
                self.documents[key] = document

    def get(self, key):
        with self._tracked():
            with self._lock:
                self.get_calls += 1
            if self.get_error is not None:
                raise self.get_error
            with self._lock:
                if key not in self.documents:
                    raise DocumentNotFoundError(f"missing {key}", key=key)
                return self.documents[key]

    def check(self):
        with self._lock:
            self.check_calls += 1
            calls = self.check_calls
        if self.check_error is not None:
            raise self.check_error
        if self.checks_before_failure is not None and calls > self.checks_before_failure:
            raise ConnectivityError("store went away")

    def close(self):
        self.closed = True

    def _tracked(self):
        store = self

        class _Tracker:
            def __enter__(self):
                with store._lock:
                    store.active += 1
                    store.max_active = max(store.max_active, store.active)
                if store.latency_s:
                    time.sleep(store.latency_s)

            def __exit__(self, exc_type, exc, tb):
                with store._lock:
                    store.active -= 1

        return _Tracker()


@pytest.fixture
def registry():
    return MetricsRegistry()


@pytest.fixture
def payload_file(tmp_path):
    path = tmp_path / "payload.json"
    path.write_text(json.dumps({"name": "benchmark", "items": list(range(10))}), encoding="utf-8")
    return path


@pytest.fixture
def payload(payload_file):
    return PayloadSpec(label="small", path=str(payload_file), size_label="1kb")


@pytest.fixture
def make_scenario(payload):
    def factory(
        number: int = 1,
        thread_count: int = 1,
        key_strategy: KeyStrategy = KeyStrategy.UNIQUE,
        **kwargs,
    ) -> Scenario:
        return Scenario(
            scenario_id=f"Scenario {number}",
            thread_count=thread_count,
            payload=kwargs.pop("payload", payload),
            key_strategy=key_strategy,
            **kwargs,
        )

    return factory
