"""
Direct (streaming) ingestion client.

Sends a payload straight to a streaming endpoint over a ``StreamingTransport``.
Endpoints are ranked by the resource manager exactly like storage accounts, so
an endpoint that keeps failing is tried last.

On its own the client makes a single attempt per call. Multi-attempt behavior
(backoff, rewinding, fallback) belongs to ``ManagedStreamingIngestClient``,
which calls ``send_stream`` / ``send_blob`` once per attempt.
"""

import gzip
import io
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, BinaryIO

from ingestion_broker.core.config.constants import IngestionPath, OperationStatus, Stage
from ingestion_broker.core.exceptions import ConfigurationError
from ingestion_broker.core.interfaces import StreamingTransport
from ingestion_broker.core.logging.logger import get_logger, log_stage
from ingestion_broker.core.resilience.resource_retry import resource_action_with_retries
from ingestion_broker.ingest.byte_source import ReplayableByteSource
from ingestion_broker.ingest.models import (
    BlobSourceInfo,
    DataFormat,
    FileSourceInfo,
    IngestionProperties,
    IngestionResult,
    StreamSourceInfo,
)
from ingestion_broker.ingest.queued_client import rows_to_csv_bytes
from ingestion_broker.resources.endpoints import DEFAULT_LOGIN_ENDPOINT, ensure_trusted_endpoint
from ingestion_broker.resources.models import StreamingEndpoint
from ingestion_broker.resources.resource_manager import ResourceManager

logger = get_logger(__name__)


def client_request_id(operation: str, source_id: str, attempt: int) -> str:
    return f"IngestionBroker.{operation};{source_id};{attempt}"


class StreamingIngestClient:
    """
    Args:
        transport: Performs the streaming calls
        endpoints: Streaming endpoints to rotate through
        resource_manager: Ranks endpoints and receives per-attempt outcomes
        validate_endpoints: Reject endpoints missing from the well-known table
        login_endpoint: Login authority used for endpoint validation
    """

    def __init__(
        self,
        transport: StreamingTransport,
        endpoints: Sequence[StreamingEndpoint],
        resource_manager: ResourceManager,
        validate_endpoints: bool = False,
        login_endpoint: str = DEFAULT_LOGIN_ENDPOINT,
    ):
        if validate_endpoints:
            for endpoint in endpoints:
                ensure_trusted_endpoint(endpoint.endpoint_without_sas, login_endpoint)
        self._transport = transport
        self._endpoints = tuple(endpoints)
        self._resource_manager = resource_manager
        self._closed = False

    @property
    def resource_manager(self) -> ResourceManager:
        return self._resource_manager

    def get_endpoints(self) -> list[StreamingEndpoint]:
        """Endpoints in rank order, interleaved across accounts."""
        return self._resource_manager.rank_resources(self._endpoints)

    # =========================================================================
    # Single attempts
    # =========================================================================

    async def send_stream(
        self,
        endpoint: StreamingEndpoint,
        payload: ReplayableByteSource,
        properties: IngestionProperties,
        *,
        compressed: bool,
        request_id: str | None = None,
    ) -> Mapping[str, Any] | None:
        """
        Send the whole payload to ``endpoint``.

        The payload is rewound first and gzip-compressed unless it already is,
        so every attempt sends identical bytes.
        """
        self._ensure_open()
        payload.rewind()
        if compressed:
            body: BinaryIO = payload
        else:
            body = io.BytesIO(gzip.compress(payload.getvalue()))
        log_stage(
            logger,
            Stage.STREAM_SEND,
            "Streaming payload",
            endpoint=endpoint.endpoint_without_sas,
            size=payload.size,
            client_request_id=request_id,
        )
        return await self._transport.execute_streaming_ingest(
            endpoint,
            properties.database,
            properties.table,
            body,
            properties.data_format,
            mapping_reference=properties.ingestion_mapping_reference,
            client_request_id=request_id,
            compressed=True,
        )

    async def send_blob(
        self,
        endpoint: StreamingEndpoint,
        source: BlobSourceInfo,
        properties: IngestionProperties,
        *,
        request_id: str | None = None,
    ) -> Mapping[str, Any] | None:
        """Ask ``endpoint`` to ingest a blob by reference."""
        self._ensure_open()
        log_stage(
            logger,
            Stage.STREAM_SEND,
            "Streaming blob by reference",
            endpoint=endpoint.endpoint_without_sas,
            blob=source.blob_name,
            client_request_id=request_id,
        )
        return await self._transport.execute_blob_ingest(
            endpoint,
            properties.database,
            properties.table,
            source.blob_path,
            properties.data_format,
            mapping_reference=properties.ingestion_mapping_reference,
            client_request_id=request_id,
        )

    # =========================================================================
    # Ingest
    # =========================================================================

    async def ingest_from_stream(
        self, source: StreamSourceInfo, properties: IngestionProperties
    ) -> IngestionResult:
        source.validate()
        properties.ensure_valid()
        try:
            payload = ReplayableByteSource.from_stream(source.stream)
        finally:
            source.close()

        request_id = client_request_id("ingest_from_stream", source.source_id, 1)
        await resource_action_with_retries(
            self._resource_manager,
            self.get_endpoints(),
            lambda endpoint: self.send_stream(
                endpoint, payload, properties, compressed=source.is_compressed, request_id=request_id
            ),
            "streaming.ingest_from_stream",
            {"source_id": source.source_id},
            max_attempts=1,
        )
        return self.direct_result(source.source_id, properties)

    async def ingest_from_file(self, source: FileSourceInfo, properties: IngestionProperties) -> IngestionResult:
        source.validate()
        with open(source.path, "rb") as f:
            stream_source = StreamSourceInfo(
                f, leave_open=True, source_id=source.source_id, compression=source.compression
            )
            return await self.ingest_from_stream(stream_source, properties)

    async def ingest_from_blob(self, source: BlobSourceInfo, properties: IngestionProperties) -> IngestionResult:
        source.validate()
        properties.ensure_valid()
        request_id = client_request_id("ingest_from_blob", source.source_id, 1)
        await resource_action_with_retries(
            self._resource_manager,
            self.get_endpoints(),
            lambda endpoint: self.send_blob(endpoint, source, properties, request_id=request_id),
            "streaming.ingest_from_blob",
            {"source_id": source.source_id},
            max_attempts=1,
        )
        return self.direct_result(source.source_id, properties)

    async def ingest_from_rows(
        self, rows: Iterable[Sequence[Any]], properties: IngestionProperties
    ) -> IngestionResult:
        if rows is None:
            raise ConfigurationError("rows must not be None")
        if properties.data_format != DataFormat.CSV:
            properties = properties.model_copy(update={"data_format": DataFormat.CSV})
        data = rows_to_csv_bytes(rows)
        return await self.ingest_from_stream(StreamSourceInfo(io.BytesIO(data), raw_size=len(data)), properties)

    async def close(self) -> None:
        self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConfigurationError("StreamingIngestClient is closed")

    @staticmethod
    def direct_result(source_id: str, properties: IngestionProperties, attempts: int = 1) -> IngestionResult:
        return IngestionResult(
            status=OperationStatus.SUCCEEDED,
            source_id=source_id,
            database=properties.database,
            table=properties.table,
            path=IngestionPath.DIRECT,
            direct_attempts=attempts,
        )
