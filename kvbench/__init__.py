"""
Key-value store benchmarking harness.

This package runs a matrix of put/get load scenarios (thread count, payload size,
key strategy, connection pool size) against a key-value store, aggregates the
latency, throughput and error statistics of every scenario, and renders report
tables and charts summarising them.
"""

from .main import main

__all__ = ["main"]
