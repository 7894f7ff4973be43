"""
Resources Layer

Ingestion resources (queues, containers, streaming endpoints), their ranking,
the periodic refresh tasks and the resource manager that publishes snapshots.
"""

from ingestion_broker.resources.endpoints import (
    get_well_known_endpoints,
    is_trusted_endpoint,
    reset_well_known_endpoints,
)
from ingestion_broker.resources.models import (
    AuthToken,
    ContainerResource,
    QueueResource,
    ResourceSnapshot,
    ResourceWithSas,
    StreamingEndpoint,
)
from ingestion_broker.resources.ranking import RankedStorageAccount, RankedStorageAccountSet
from ingestion_broker.resources.refresh_task import RefreshTask
from ingestion_broker.resources.resource_manager import ResourceManager

__all__ = [
    "AuthToken",
    "ContainerResource",
    "QueueResource",
    "RankedStorageAccount",
    "RankedStorageAccountSet",
    "RefreshTask",
    "ResourceManager",
    "ResourceSnapshot",
    "ResourceWithSas",
    "StreamingEndpoint",
    "get_well_known_endpoints",
    "is_trusted_endpoint",
    "reset_well_known_endpoints",
]
