"""
Resource Exceptions

Errors about the pool of ingestion resources served by the resource manager
and about running out of resources to rotate through.

Author: System Architect
Date: 2025-12-08
"""

from ingestion_broker.core.exceptions.base import ErrorKind, IngestionBrokerError


class ResourceUnavailableError(IngestionBrokerError):
    """
    Raised when no usable resource snapshot can be served.

    Common causes:
    - No snapshot was ever published and the initial fetch failed
    - The published snapshot is older than the staleness ceiling
    """

    default_kind = ErrorKind.RESOURCE_EXHAUSTED


class StaleResourcesError(ResourceUnavailableError):
    """Raised when refreshes kept failing past the configured max staleness."""
    pass


class ResourceExhaustedError(IngestionBrokerError):
    """
    Raised when every attempt of a resource-scoped action failed transiently.

    ``details["attempts"]`` holds one entry per attempt (resource, account,
    attempt number, error) and ``__cause__`` is the last underlying error.
    """

    default_kind = ErrorKind.RESOURCE_EXHAUSTED


class RefreshError(IngestionBrokerError):
    """
    Raised inside a refresh task when fetched data is unusable.

    Never propagated to ingestion callers: the refresh loop logs it and keeps
    serving the previous snapshot.
    """

    default_kind = ErrorKind.TRANSIENT
