"""
Queued (durable) ingestion client.

Every payload ends up as a blob in a temporary container plus one ingestion
message on an ingestion queue; the backend picks the message up and ingests
the blob. Both steps go through the resource-scoped retry algorithm, so a
failing storage account is demoted in the ranking and the next attempt goes
to a different account.

Durability: once ``ingest_*`` returns, the message has been accepted by a
queue. Any failure before that is raised to the caller.
"""

import csv
import io
import tempfile
import time
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any, BinaryIO

import orjson

from ingestion_broker.core.config.constants import (
    COPY_BUFFER_SIZE,
    MAX_STREAMING_SIZE_BYTES,
    IngestionPath,
    OperationStatus,
    Stage,
)
from ingestion_broker.core.config.settings import Settings, get_settings
from ingestion_broker.core.exceptions import ConfigurationError
from ingestion_broker.core.interfaces import StorageClient
from ingestion_broker.core.logging.logger import get_logger, log_stage
from ingestion_broker.core.monitoring.metrics_collector import get_metrics_collector
from ingestion_broker.core.resilience.resource_retry import (
    UploadResult,
    post_to_queue_with_retries,
    upload_local_file_with_retries,
    upload_stream_to_blob_with_retries,
)
from ingestion_broker.ingest.byte_source import remaining_length
from ingestion_broker.ingest.models import (
    BlobSourceInfo,
    DataFormat,
    FileSourceInfo,
    IngestionProperties,
    IngestionResult,
    StreamSourceInfo,
)
from ingestion_broker.resources.resource_manager import ResourceManager

logger = get_logger(__name__)


def should_compress(compressed: bool, data_format: DataFormat) -> bool:
    """Gzip on upload unless the payload is already compressed or a binary format."""
    return not compressed and not data_format.is_binary


def generate_blob_name(properties: IngestionProperties, source_id: str, name: str, extension: str) -> str:
    return f"{properties.database}__{properties.table}__{source_id}__{name}{extension}"


def rows_to_csv_bytes(rows: Iterable[Sequence[Any]]) -> bytes:
    """Serialize rows as CSV; ``None`` becomes an empty field."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue().encode("utf-8")


class QueuedIngestClient:
    """
    Durable ingestion through blob storage and ingestion queues.

    Args:
        resource_manager: Source of queues, containers and the identity token
        storage_client: Performs the actual blob and queue calls
        settings: Retry bounds (defaults to the process settings)
    """

    def __init__(
        self,
        resource_manager: ResourceManager,
        storage_client: StorageClient,
        settings: Settings | None = None,
    ):
        self._resource_manager = resource_manager
        self._storage_client = storage_client
        retry = (settings or get_settings()).retry
        self._max_attempts = retry.RESOURCE_RETRY_ATTEMPTS
        self._attempt_timeout = retry.ATTEMPT_TIMEOUT
        self._metrics = get_metrics_collector()
        self._closed = False

    @property
    def resource_manager(self) -> ResourceManager:
        return self._resource_manager

    # =========================================================================
    # Ingest
    # =========================================================================

    async def ingest_from_stream(
        self, source: StreamSourceInfo, properties: IngestionProperties
    ) -> IngestionResult:
        source.validate()
        properties.ensure_valid()
        self._ensure_open()
        start = time.perf_counter()

        compress = should_compress(source.is_compressed, properties.data_format)
        extension = f".{properties.data_format.value}"
        if compress:
            extension += ".gz"
        elif source.compression is not None:
            extension += f".{source.compression.value}"
        blob_name = generate_blob_name(properties, source.source_id, "stream", extension)

        stream, spooled = self._replayable(source.stream)
        try:
            upload = await upload_stream_to_blob_with_retries(
                self._resource_manager,
                self._storage_client,
                stream,
                blob_name,
                compress,
                max_attempts=self._max_attempts,
                attempt_timeout=self._attempt_timeout,
            )
        finally:
            if spooled is not None:
                spooled.close()
            source.close()

        log_stage(
            logger, Stage.QUEUED_UPLOAD, "Stream uploaded", source_id=source.source_id, size=upload.size
        )
        raw_size = source.raw_size if source.raw_size is not None else upload.size
        result = await self._post_ingestion_message(upload, raw_size, source.source_id, properties)
        self._metrics.record_ingestion_duration(IngestionPath.QUEUED.value, time.perf_counter() - start)
        return result

    async def ingest_from_file(self, source: FileSourceInfo, properties: IngestionProperties) -> IngestionResult:
        source.validate()
        properties.ensure_valid()
        self._ensure_open()
        start = time.perf_counter()

        compress = should_compress(source.is_compressed, properties.data_format)
        blob_name = generate_blob_name(
            properties, source.source_id, source.file_name, ".gz" if compress else ""
        )
        upload = await upload_local_file_with_retries(
            self._resource_manager,
            self._storage_client,
            source.path,
            blob_name,
            compress,
            max_attempts=self._max_attempts,
            attempt_timeout=self._attempt_timeout,
        )
        log_stage(logger, Stage.QUEUED_UPLOAD, "File uploaded", source_id=source.source_id, size=upload.size)

        raw_size = source.raw_size if source.raw_size is not None else upload.size
        result = await self._post_ingestion_message(upload, raw_size, source.source_id, properties)
        self._metrics.record_ingestion_duration(IngestionPath.QUEUED.value, time.perf_counter() - start)
        return result

    async def ingest_from_blob(self, source: BlobSourceInfo, properties: IngestionProperties) -> IngestionResult:
        """Post a message for a blob that is already in storage; nothing is uploaded."""
        source.validate()
        properties.ensure_valid()
        self._ensure_open()
        upload = UploadResult(blob_path=source.blob_path, size=source.exact_size or 0)
        return await self._post_ingestion_message(upload, source.exact_size or 0, source.source_id, properties)

    async def ingest_from_rows(
        self, rows: Iterable[Sequence[Any]], properties: IngestionProperties
    ) -> IngestionResult:
        """Serialize rows to CSV and ingest them as a stream."""
        if rows is None:
            raise ConfigurationError("rows must not be None")
        if properties.data_format != DataFormat.CSV:
            properties = properties.model_copy(update={"data_format": DataFormat.CSV})
        data = rows_to_csv_bytes(rows)
        return await self.ingest_from_stream(
            StreamSourceInfo(io.BytesIO(data), raw_size=len(data)), properties
        )

    async def close(self) -> None:
        """Close the client. The resource manager is shared and closed by its owner."""
        self._closed = True

    # =========================================================================
    # Internals
    # =========================================================================

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConfigurationError("QueuedIngestClient is closed")

    @staticmethod
    def _replayable(stream: BinaryIO) -> tuple[BinaryIO, Any]:
        """Return a seekable view of ``stream``, spooling it if necessary."""
        if remaining_length(stream) is not None:
            return stream, None
        spooled = tempfile.SpooledTemporaryFile(max_size=MAX_STREAMING_SIZE_BYTES)
        while True:
            chunk = stream.read(COPY_BUFFER_SIZE)
            if not chunk:
                break
            spooled.write(chunk)
        spooled.seek(0)
        return spooled, spooled

    def build_ingestion_message(
        self,
        blob_path: str,
        raw_size: int,
        source_id: str,
        properties: IngestionProperties,
        authorization_context: str,
    ) -> dict[str, Any]:
        additional = dict(properties.additional_properties)
        additional["format"] = properties.data_format.value
        additional["authorizationContext"] = authorization_context
        if properties.ingestion_mapping_reference:
            additional["ingestionMappingReference"] = properties.ingestion_mapping_reference

        return {
            "Id": source_id,
            "BlobPath": blob_path,
            "RawDataSize": raw_size,
            "DatabaseName": properties.database,
            "TableName": properties.table,
            "RetainBlobOnSuccess": True,
            "FlushImmediately": properties.flush_immediately,
            "ReportLevel": properties.report_level.value,
            "ReportMethod": properties.report_method.value,
            "SourceMessageCreationTime": datetime.now(timezone.utc).isoformat(),
            "AdditionalProperties": additional,
        }

    async def _post_ingestion_message(
        self,
        upload: UploadResult,
        raw_size: int,
        source_id: str,
        properties: IngestionProperties,
    ) -> IngestionResult:
        token = await self._resource_manager.get_identity_token()
        message = self.build_ingestion_message(upload.blob_path, raw_size, source_id, properties, token)

        queue = await post_to_queue_with_retries(
            self._resource_manager,
            self._storage_client,
            orjson.dumps(message).decode("utf-8"),
            {"source_id": source_id, "database": properties.database, "table": properties.table},
            max_attempts=self._max_attempts,
            attempt_timeout=self._attempt_timeout,
        )
        log_stage(
            logger,
            Stage.QUEUED_POST,
            "Ingestion message posted",
            source_id=source_id,
            queue=queue.endpoint_without_sas,
            raw_size=raw_size,
        )
        return IngestionResult(
            status=OperationStatus.QUEUED,
            source_id=source_id,
            database=properties.database,
            table=properties.table,
            path=IngestionPath.QUEUED,
        )
