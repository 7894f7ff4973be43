"""
Exception Module

Tagged exception family for the ingestion broker. Every error carries an
``ErrorKind`` (configuration, transient, permanent, resource_exhausted); the
retry and routing layers branch on that tag through ``classify_error``.

Module Structure:
-----------------
- **base.py**: ErrorKind, IngestionBrokerError base class + ConfigurationError
- **backend.py**: transient / permanent backend errors and classification
- **resource.py**: resource availability and exhaustion errors

Usage:
------
```python
from ingestion_broker.core.exceptions import ErrorKind, classify_error

try:
    await client.ingest_from_stream(source, properties)
except IngestionBrokerError as e:
    if e.kind == ErrorKind.PERMANENT:
        ...
```
"""

from ingestion_broker.core.exceptions.backend import (
    BackendError,
    PermanentBackendError,
    ThrottledError,
    TransientBackendError,
    classify_error,
    is_permanent_error,
    is_retryable_error,
)
from ingestion_broker.core.exceptions.base import ConfigurationError, ErrorKind, IngestionBrokerError
from ingestion_broker.core.exceptions.resource import (
    RefreshError,
    ResourceExhaustedError,
    ResourceUnavailableError,
    StaleResourcesError,
)

__all__ = [
    # Base
    "ErrorKind",
    "IngestionBrokerError",
    "ConfigurationError",
    # Backend
    "BackendError",
    "TransientBackendError",
    "ThrottledError",
    "PermanentBackendError",
    "classify_error",
    "is_permanent_error",
    "is_retryable_error",
    # Resources
    "ResourceUnavailableError",
    "StaleResourcesError",
    "ResourceExhaustedError",
    "RefreshError",
]
