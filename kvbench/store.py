from __future__ import annotations

import abc
import contextlib
import json
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import redis

from .errors import (
    ConnectivityError,
    DocumentNotFoundError,
    OperationError,
    PayloadError,
)

if TYPE_CHECKING:
    from .config import Settings

LOGGER = logging.getLogger("kvbench.store")

INITIALIZATION_CHECK_KEY = "initialization_check_key"


class StoreClient(contextlib.AbstractContextManager["StoreClient"], abc.ABC):
    """Synchronous key-value store used by the load test executor."""

    @abc.abstractmethod
    def put(self, key: str, document: dict[str, Any]) -> None:
        ...

    @abc.abstractmethod
    def get(self, key: str) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    def check(self) -> None:
        """Warm the connection up; raise ConnectivityError if the store is unusable."""

    def close(self) -> None:
        pass

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class RedisStoreClient(StoreClient):
    """Stores JSON documents in Redis under ``{namespace}::{key}``."""

    def __init__(
        self,
        url: str,
        namespace: str,
        username: str | None = None,
        password: str | None = None,
        pool_size: int | None = None,
        socket_timeout: float | None = None,
        check_timeout_s: float = 30.0,
    ) -> None:
        self._url = url
        self._namespace = namespace
        self._pool_size = pool_size
        self._check_timeout_s = check_timeout_s

        options: dict[str, Any] = {}
        if username:
            options["username"] = username
        if password:
            options["password"] = password
        if socket_timeout is not None:
            options["socket_timeout"] = socket_timeout

        if pool_size:
            LOGGER.info("Custom connection pool size set to: %d", pool_size)
            # Exhausted pools wait for a free connection rather than erroring.
            self._pool = redis.BlockingConnectionPool.from_url(
                url, max_connections=pool_size, timeout=None, **options
            )
        else:
            LOGGER.info("Using default connection pool size")
            self._pool = redis.ConnectionPool.from_url(url, **options)
        self._client = redis.Redis(connection_pool=self._pool)

    @property
    def pool_size(self) -> int | None:
        return self._pool_size

    def put(self, key: str, document: dict[str, Any]) -> None:
        try:
            self._client.set(self._qualify(key), json.dumps(document))
        except redis.RedisError as exc:
            raise OperationError(f"put failed for key {key!r}: {exc}", key=key) from exc

    def get(self, key: str) -> dict[str, Any]:
        try:
            raw = self._client.get(self._qualify(key))
        except redis.RedisError as exc:
            raise OperationError(f"get failed for key {key!r}: {exc}", key=key) from exc
        if raw is None:
            raise DocumentNotFoundError(f"document not found for key {key!r}", key=key)
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise OperationError(f"undecodable document under key {key!r}", key=key) from exc

    def check(self) -> None:
        backoff = 1.0
        max_backoff = 10.0
        deadline = time.time() + self._check_timeout_s

        while True:
            try:
                self._client.ping()
                # Opens the connection before the load starts; a miss is fine.
                self._client.get(self._qualify(INITIALIZATION_CHECK_KEY))
                LOGGER.info("Store at %s initialised (namespace=%s)", self._url, self._namespace)
                return
            except redis.RedisError as exc:
                if time.time() >= deadline:
                    raise ConnectivityError(
                        f"failed to reach store at {self._url} within {self._check_timeout_s:.0f} seconds"
                    ) from exc
                LOGGER.debug("Store not ready yet (%s), retrying in %.1fs", exc, backoff)
                time.sleep(backoff)
                backoff = min(backoff * 1.5, max_backoff)

    def close(self) -> None:
        self._client.close()
        self._pool.disconnect()
        LOGGER.info("Store connection closed")

    def _qualify(self, key: str) -> str:
        return f"{self._namespace}::{key}"


def connect_store(settings: "Settings", pool_size: int | None = None) -> StoreClient:
    try:
        return RedisStoreClient(
            url=settings.store_url,
            namespace=settings.bucket,
            username=settings.store_username,
            password=settings.store_password,
            pool_size=pool_size,
            socket_timeout=settings.socket_timeout,
        )
    except (redis.RedisError, ValueError) as exc:
        raise ConnectivityError(f"cannot configure store client for {settings.store_url}: {exc}") from exc


def load_payload(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    LOGGER.info("Loading JSON payload from %s", path)
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise PayloadError(f"cannot read payload {path}: {exc}") from exc
    except ValueError as exc:
        raise PayloadError(f"payload {path} is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise PayloadError(f"payload {path} must contain a JSON object")
    return document


__all__ = [
    "INITIALIZATION_CHECK_KEY",
    "RedisStoreClient",
    "StoreClient",
    "connect_store",
    "load_payload",
]
