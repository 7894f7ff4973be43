"""
Collaborator Interfaces

Structural types for everything the broker consumes but does not implement
(management endpoint, storage operations, streaming transport) and for the
ingest-client capability that the queued, streaming and managed clients share.

Collaborators report failures by raising. An ``IngestionBrokerError`` carries
its own ``kind``; any other exception is classified by
``ingestion_broker.core.exceptions.classify_error``.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ingestion_broker.ingest.models import (
        BlobSourceInfo,
        DataFormat,
        FileSourceInfo,
        IngestionProperties,
        IngestionResult,
        StreamSourceInfo,
    )
    from ingestion_broker.resources.models import ContainerResource, QueueResource, ResourceWithSas, StreamingEndpoint


@runtime_checkable
class ManagementCommandExecutor(Protocol):
    """Runs a management command and returns rows keyed by column name."""

    async def execute_management_command(self, command: str) -> Sequence[Mapping[str, Any]]:
        ...


@runtime_checkable
class StorageClient(Protocol):
    """Blob and queue operations of the durable path."""

    async def post_message_to_queue(self, queue: "QueueResource", message: str) -> None:
        ...

    async def upload_stream_to_blob(
        self, container: "ContainerResource", blob_name: str, stream: BinaryIO, compress: bool
    ) -> int:
        """Upload ``stream``; returns the number of uncompressed bytes read."""
        ...

    async def upload_file_to_blob(
        self, container: "ContainerResource", blob_name: str, path: str, compress: bool
    ) -> int:
        ...


@runtime_checkable
class StreamingTransport(Protocol):
    """Direct-path calls to a streaming endpoint."""

    async def execute_streaming_ingest(
        self,
        endpoint: "StreamingEndpoint",
        database: str,
        table: str,
        stream: BinaryIO,
        data_format: "DataFormat",
        *,
        mapping_reference: str | None = None,
        client_request_id: str | None = None,
        compressed: bool = False,
    ) -> Mapping[str, Any] | None:
        ...

    async def execute_blob_ingest(
        self,
        endpoint: "StreamingEndpoint",
        database: str,
        table: str,
        blob_path: str,
        data_format: "DataFormat",
        *,
        mapping_reference: str | None = None,
        client_request_id: str | None = None,
    ) -> Mapping[str, Any] | None:
        ...


@runtime_checkable
class IngestClient(Protocol):
    """Ingestion capability shared by the queued, streaming and managed clients."""

    async def ingest_from_stream(
        self, source: "StreamSourceInfo", properties: "IngestionProperties"
    ) -> "IngestionResult":
        ...

    async def ingest_from_file(
        self, source: "FileSourceInfo", properties: "IngestionProperties"
    ) -> "IngestionResult":
        ...

    async def ingest_from_blob(
        self, source: "BlobSourceInfo", properties: "IngestionProperties"
    ) -> "IngestionResult":
        ...

    async def ingest_from_rows(
        self, rows: Iterable[Sequence[Any]], properties: "IngestionProperties"
    ) -> "IngestionResult":
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class IngestionResultSink(Protocol):
    """Receives per-resource outcomes (implemented by the resource manager)."""

    def report_ingestion_result(self, resource: "ResourceWithSas", success: bool) -> None:
        ...
