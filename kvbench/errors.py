from __future__ import annotations

import enum


class KvBenchError(Exception):
    """Base class for failures raised by the benchmark harness."""


class ConfigurationError(KvBenchError):
    """Raised when a required setting is missing, empty or malformed."""


class ConnectivityError(KvBenchError):
    """Raised when the store cannot be reached or initialised."""


class OperationError(KvBenchError):
    """Raised when a single put/get against the store fails."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class DocumentNotFoundError(OperationError):
    """Raised when a get finds no document under the key."""


class PayloadError(KvBenchError):
    """Raised when a payload document cannot be read from disk."""


class ErrorKind(enum.Enum):
    CONFIGURATION = "configuration"
    CONNECTIVITY = "connectivity"
    OPERATION = "operation"
    UNEXPECTED = "unexpected"


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, ConfigurationError):
        return ErrorKind.CONFIGURATION
    if isinstance(exc, ConnectivityError):
        return ErrorKind.CONNECTIVITY
    if isinstance(exc, OperationError):
        return ErrorKind.OPERATION
    return ErrorKind.UNEXPECTED


__all__ = [
    "ConfigurationError",
    "ConnectivityError",
    "DocumentNotFoundError",
    "ErrorKind",
    "KvBenchError",
    "OperationError",
    "PayloadError",
    "classify_error",
]
