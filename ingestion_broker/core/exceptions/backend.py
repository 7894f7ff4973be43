"""
Backend Exceptions

Errors raised by (or on behalf of) the ingestion backend: storage queues and
containers, the streaming endpoint and the management endpoint.

Author: System Architect
Date: 2025-12-08
"""

import asyncio

from ingestion_broker.core.exceptions.base import ConfigurationError, ErrorKind, IngestionBrokerError


class BackendError(IngestionBrokerError):
    """Base exception for backend errors. Transient unless marked otherwise."""
    pass


class TransientBackendError(BackendError):
    """
    Raised when a backend call fails in a way that retrying may fix.

    Common causes:
    - Network connectivity issues
    - Request timeout
    - Backend overload
    """

    default_kind = ErrorKind.TRANSIENT


class ThrottledError(TransientBackendError):
    """Raised when the backend throttles the caller (HTTP 429 and similar)."""
    pass


class PermanentBackendError(BackendError):
    """
    Raised when the backend asserts that retrying cannot help.

    Common causes:
    - Malformed data or mapping mismatch
    - Authorization denied
    - Target table does not exist
    """

    default_kind = ErrorKind.PERMANENT


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Classify any exception into an ErrorKind.

    Broker errors carry their own kind. Timeouts and connection errors are
    transient; ValueError/TypeError raised by collaborators mean the caller
    handed in bad input. Anything else is treated as transient.
    """
    if isinstance(exc, IngestionBrokerError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, (ValueError, TypeError)):
        return ErrorKind.CONFIGURATION
    return ErrorKind.TRANSIENT


def is_permanent_error(exc: BaseException) -> bool:
    return classify_error(exc) == ErrorKind.PERMANENT


def is_retryable_error(exc: BaseException) -> bool:
    return classify_error(exc) == ErrorKind.TRANSIENT


__all__ = [
    "BackendError",
    "ConfigurationError",
    "PermanentBackendError",
    "ThrottledError",
    "TransientBackendError",
    "classify_error",
    "is_permanent_error",
    "is_retryable_error",
]
