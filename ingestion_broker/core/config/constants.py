"""
System Constants and Enumerations

This module defines constants and enumerations shared across the ingestion
broker: stage identifiers for logging, resource kinds, refresh task states,
ingestion status values and default numeric bounds.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for state management

Author: System Architect
Date: 2025-12-05
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Processing stages used as the ``stage`` field of log entries.

    Format: {PREFIX}.{SEQUENCE}_{DESCRIPTIVE_NAME}
    """

    # Resource manager
    RM_REFRESH = "RM.1_REFRESH"
    RM_PUBLISH = "RM.2_PUBLISH_SNAPSHOT"
    RM_REFRESH_FAILED = "RM.3_REFRESH_FAILED"
    RM_STALE = "RM.4_STALE_SNAPSHOT"
    RM_CLOSE = "RM.5_CLOSE"

    # Resource-scoped retry
    RETRY_ATTEMPT = "RETRY.1_ATTEMPT"
    RETRY_FAILED = "RETRY.2_ATTEMPT_FAILED"
    RETRY_EXHAUSTED = "RETRY.3_EXHAUSTED"

    # Managed streaming router
    ROUTE_ADMISSION = "ROUTE.1_ADMISSION"
    ROUTE_DIRECT = "ROUTE.2_DIRECT_PATH"
    ROUTE_BACKOFF = "ROUTE.3_BACKOFF"
    ROUTE_FALLBACK = "ROUTE.4_FALLBACK_TO_QUEUED"
    ROUTE_PERMANENT = "ROUTE.5_PERMANENT_FAILURE"

    # Paths
    QUEUED_UPLOAD = "QUEUED.1_UPLOAD"
    QUEUED_POST = "QUEUED.2_POST_MESSAGE"
    STREAM_SEND = "STREAM.1_SEND"


# ============================================================================
# Resource Kinds (management command column values)
# ============================================================================


class ResourceKind(str, Enum):
    """Resource type names returned by the ingestion resources command."""

    QUEUE = "SecuredReadyForAggregationQueue"
    CONTAINER = "TempStorage"
    STATUS_TABLE = "IngestionsStatusTable"
    FAILED_QUEUE = "FailedIngestionsQueue"
    SUCCESS_QUEUE = "SuccessfulIngestionsQueue"


class RefreshState(str, Enum):
    """
    Refresh task states.

    IDLE -> FETCHING -> (PUBLISHED | FAILED_KEEP_STALE) -> IDLE
    """

    IDLE = "idle"
    FETCHING = "fetching"
    PUBLISHED = "published"
    FAILED_KEEP_STALE = "failed_keep_stale"
    STOPPED = "stopped"


class OperationStatus(str, Enum):
    """Status reported for one ingestion operation."""

    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    QUEUED = "Queued"


class IngestionPath(str, Enum):
    """Path that produced the terminal outcome of an ingestion request."""

    DIRECT = "direct"
    QUEUED = "queued"


# ============================================================================
# Management Commands
# ============================================================================

INGESTION_RESOURCES_COMMAND = ".get ingestion resources"
IDENTITY_TOKEN_COMMAND = ".get kusto identity token"

RESOURCE_TYPE_COLUMN = "ResourceTypeName"
STORAGE_ROOT_COLUMN = "StorageRoot"
ACCOUNT_NAME_COLUMN = "AccountName"
AUTHORIZATION_CONTEXT_COLUMN = "AuthorizationContext"


# ============================================================================
# Refresh & Ranking Defaults
# ============================================================================

DEFAULT_RESOURCES_REFRESH_INTERVAL = 60 * 60.0
DEFAULT_RESOURCES_RETRY_INTERVAL = 15 * 60.0
DEFAULT_AUTH_TOKEN_REFRESH_INTERVAL = 60 * 60.0
DEFAULT_AUTH_TOKEN_RETRY_INTERVAL = 15 * 60.0
DEFAULT_MAX_STALENESS = 6 * 60 * 60.0

RANKING_BUCKET_COUNT = 6
RANKING_BUCKET_DURATION_SECONDS = 10.0
RANK_FLOOR = 0.01
RANK_CEILING = 1.0


# ============================================================================
# Retry & Streaming Defaults
# ============================================================================

DEFAULT_ATTEMPT_COUNT = 3

MIB = 1024 * 1024
DEFAULT_RAW_SIZE_THRESHOLD_BYTES = 4 * MIB
MAX_STREAMING_SIZE_BYTES = 10 * MIB

COPY_BUFFER_SIZE = 16384
