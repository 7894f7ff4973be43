"""
Base Exception Class

This module contains the base exception class and the error kind tag that all
other exceptions carry. Callers branch on ``error.kind`` rather than on the
exception subtype.

Author: System Architect
Date: 2025-12-08
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """
    Classification carried by every ingestion broker error.

    CONFIGURATION: invalid or missing input; fails before any resource access, never retried
    TRANSIENT: throttling, connectivity, timeout; retried with backoff
    PERMANENT: backend-asserted non-retryable failure; short-circuits retries
    RESOURCE_EXHAUSTED: nothing left to rotate through, or retry bound exceeded
    """

    CONFIGURATION = "configuration"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RESOURCE_EXHAUSTED = "resource_exhausted"


class IngestionBrokerError(Exception):
    """
    Base exception for all ingestion broker errors.

    All custom exceptions inherit from this class to enable:
    - One classification tag (``kind``) checked by the retry and routing layers
    - Operation ID correlation
    - Structured error logging
    - Rich context for debugging

    Attributes:
        message: Error message
        kind: ErrorKind classification
        operation_id: Operation ID for correlation (if available)
        details: Additional error details (dict)

    Example:
        raise PermanentBackendError(
            "Streaming ingestion rejected the payload",
            operation_id="abc-123",
            details={"endpoint": "https://cluster.example.net", "status": 400},
        )
    """

    default_kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        operation_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.kind = kind or self.default_kind
        self.operation_id = operation_id
        self.details = (details or {}).copy()  # Create a copy to prevent external modification
        super().__init__(self.message)

    @property
    def is_permanent(self) -> bool:
        return self.kind == ErrorKind.PERMANENT

    @property
    def is_transient(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging.

        Returns:
            Dict with error_type, kind, message, operation_id and details
        """
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "operation_id": self.operation_id,
            "details": self.details,
        }

    def with_suggestion(self, suggestion: str) -> "IngestionBrokerError":
        """
        Add a suggestion to help users fix the error.

        Returns:
            Self (for method chaining)
        """
        self.details["suggestion"] = suggestion
        return self

    def with_context(self, **context) -> "IngestionBrokerError":
        """
        Add additional context to the error details.

        Returns:
            Self (for method chaining)
        """
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        operation_str = f", operation_id='{self.operation_id}'" if self.operation_id else ""
        return (
            f"{self.__class__.__name__}(message='{self.message}', kind='{self.kind.value}'"
            f"{operation_str}{details_str})"
        )

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        operation_id: str | None = None,
        **details,
    ) -> "IngestionBrokerError":
        """
        Create an error of this class from another exception.

        Useful for wrapping collaborator exceptions with additional context.
        The original exception is kept as ``__cause__``.

        Example:
            >>> try:
            ...     await storage.post_message_to_queue(queue, message)
            ... except OSError as e:
            ...     raise TransientBackendError.from_exception(e, queue=queue.endpoint_without_sas)
        """
        error_message = message or str(exc)
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details,
        }
        error = cls(error_message, operation_id=operation_id, details=error_details)
        error.__cause__ = exc
        return error


class ConfigurationError(IngestionBrokerError):
    """
    Raised when input or configuration is invalid or missing.

    Fails synchronously before any resource is touched and is never retried.
    """

    default_kind = ErrorKind.CONFIGURATION
