"""
Managed Streaming Router

Chooses, per request, between the direct (streaming) path and the durable
queued path, and guarantees exactly one terminal outcome.

MECHANISM OF ACTION:
-------------------
1.  **Admission** (``QueuingPolicy.decide``):
    Known sizes (blob metadata, file size, seekable stream length) are checked
    without reading the payload. Unknown-size streams are sized from a prefix
    of at most ``max_streaming_size + 1`` bytes; if that prefix routes to
    queued, it is stitched back in front of the rest of the stream.

2.  **Materialize**:
    Payloads admitted to the direct path are copied into a
    ``ReplayableByteSource``. Admission already bounded their size.

3.  **Direct attempts**:
    Driven by the resource-scoped retry algorithm over the ranked streaming
    endpoints: fixed attempt count, exponential backoff with jitter, payload
    rewound before every retry.

4.  **Outcome**:
    - success                 -> result from the direct path
    - permanent failure       -> raised at once (or queued, if configured)
    - only transient failures -> the same payload goes to the queued client,
                                 exactly once

The two paths never run concurrently for the same request.
"""

import asyncio
import io
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any

from tenacity import wait_exponential_jitter

from ingestion_broker.core.config.constants import IngestionPath, Stage
from ingestion_broker.core.config.settings import Settings, get_settings
from ingestion_broker.core.exceptions import (
    ConfigurationError,
    ErrorKind,
    IngestionBrokerError,
    ResourceExhaustedError,
)
from ingestion_broker.core.logging.logger import get_logger, log_stage, reset_operation_id, set_operation_id
from ingestion_broker.core.monitoring.metrics_collector import get_metrics_collector
from ingestion_broker.core.resilience.resource_retry import AttemptRecord, resource_action_with_retries
from ingestion_broker.ingest.byte_source import (
    ChainedStream,
    ReplayableByteSource,
    read_bounded_prefix,
    remaining_length,
)
from ingestion_broker.ingest.models import (
    BlobSourceInfo,
    DataFormat,
    FileSourceInfo,
    IngestionProperties,
    IngestionResult,
    StreamSourceInfo,
)
from ingestion_broker.ingest.queued_client import QueuedIngestClient, rows_to_csv_bytes
from ingestion_broker.ingest.queuing_policy import QueuingDecision, QueuingPolicy
from ingestion_broker.ingest.streaming_client import StreamingIngestClient, client_request_id

logger = get_logger(__name__)

BlobSizeResolver = Callable[[BlobSourceInfo], Awaitable[int | None]]


class _DirectPathFailed(Exception):
    """Direct path ended without success and the request must go to the queued path."""

    def __init__(self, reason: str, attempts: int):
        super().__init__(reason)
        self.reason = reason
        self.attempts = attempts


class ManagedStreamingIngestClient:
    """
    Direct path first, queued path when the payload is too large or the direct
    path keeps failing transiently.

    Args:
        streaming_client: Direct-path component
        queued_client: Durable-path component
        queuing_policy: Admission policy (defaults from settings)
        attempt_count: Direct-path attempts before falling back
        retry_base_delay: Initial backoff delay in seconds
        retry_max_delay: Backoff ceiling in seconds
        permanent_failures_terminal: Raise permanent direct-path errors; when
            False they are sent straight to the queued path
        blob_size_resolver: Looks up a blob's size when ``exact_size`` is unset
        attempt_timeout: Per-attempt timeout in seconds (defaults from settings)
        sleep: Sleep coroutine used for backoff

    Example:
        >>> client = ManagedStreamingIngestClient(streaming, queued)
        >>> result = await client.ingest_from_stream(StreamSourceInfo(f), props)
        >>> result.path
        <IngestionPath.DIRECT: 'direct'>
    """

    def __init__(
        self,
        streaming_client: StreamingIngestClient,
        queued_client: QueuedIngestClient,
        *,
        queuing_policy: QueuingPolicy | None = None,
        attempt_count: int | None = None,
        retry_base_delay: float | None = None,
        retry_max_delay: float | None = None,
        permanent_failures_terminal: bool | None = None,
        blob_size_resolver: BlobSizeResolver | None = None,
        attempt_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        streaming = settings.streaming
        self._streaming_client = streaming_client
        self._queued_client = queued_client
        self.queuing_policy = queuing_policy or QueuingPolicy.from_settings(streaming)
        self.attempt_count = attempt_count if attempt_count is not None else streaming.STREAMING_ATTEMPT_COUNT
        if self.attempt_count < 1:
            raise ConfigurationError("attempt_count must be at least 1", details={"attempt_count": self.attempt_count})
        self._wait = wait_exponential_jitter(
            initial=retry_base_delay if retry_base_delay is not None else streaming.STREAMING_RETRY_BASE_DELAY,
            max=retry_max_delay if retry_max_delay is not None else streaming.STREAMING_RETRY_MAX_DELAY,
        )
        self.permanent_failures_terminal = (
            permanent_failures_terminal
            if permanent_failures_terminal is not None
            else streaming.PERMANENT_FAILURES_TERMINAL
        )
        self._blob_size_resolver = blob_size_resolver
        self.attempt_timeout = attempt_timeout if attempt_timeout is not None else settings.retry.ATTEMPT_TIMEOUT
        self._sleep = sleep
        self._metrics = get_metrics_collector()

    @property
    def streaming_client(self) -> StreamingIngestClient:
        return self._streaming_client

    @property
    def queued_client(self) -> QueuedIngestClient:
        return self._queued_client

    def set_queuing_policy_factor(self, factor: float) -> None:
        self.queuing_policy = self.queuing_policy.with_factor(factor)

    # =========================================================================
    # Ingest
    # =========================================================================

    async def ingest_from_stream(
        self, source: StreamSourceInfo, properties: IngestionProperties
    ) -> IngestionResult:
        source.validate()
        properties.ensure_valid()
        token = set_operation_id(source.source_id)
        try:
            return await self._route_stream(source, properties)
        finally:
            reset_operation_id(token)

    async def ingest_from_file(self, source: FileSourceInfo, properties: IngestionProperties) -> IngestionResult:
        source.validate()
        properties.ensure_valid()
        token = set_operation_id(source.source_id)
        try:
            return await self._route_file(source, properties)
        finally:
            reset_operation_id(token)

    async def ingest_from_blob(self, source: BlobSourceInfo, properties: IngestionProperties) -> IngestionResult:
        source.validate()
        properties.ensure_valid()
        token = set_operation_id(source.source_id)
        try:
            return await self._route_blob(source, properties)
        finally:
            reset_operation_id(token)

    async def _route_stream(self, source: StreamSourceInfo, properties: IngestionProperties) -> IngestionResult:
        start = time.perf_counter()

        size = remaining_length(source.stream)
        if size is None and source.raw_size is not None and not source.is_compressed:
            size = source.raw_size
        if size is not None:
            decision = self._admit(size, source, properties)
            if decision.use_queued:
                return await self._queued_client.ingest_from_stream(source, properties)
            try:
                payload = ReplayableByteSource.from_stream(source.stream)
            finally:
                source.close()
        else:
            # Unknown size: decide on a bounded prefix
            prefix = read_bounded_prefix(source.stream, self.queuing_policy.max_streaming_size + 1)
            decision = self._admit(len(prefix), source, properties)
            if decision.use_queued:
                stitched = StreamSourceInfo(
                    io.BufferedReader(ChainedStream(prefix, source.stream)),
                    leave_open=True,
                    source_id=source.source_id,
                    compression=source.compression,
                    raw_size=source.raw_size,
                )
                try:
                    return await self._queued_client.ingest_from_stream(stitched, properties)
                finally:
                    source.close()
            try:
                payload = ReplayableByteSource.from_stream(source.stream, prefix)
            finally:
                source.close()

        try:
            return await self._stream_then_fallback(source, payload, properties, start)
        finally:
            payload.close()

    async def _route_file(self, source: FileSourceInfo, properties: IngestionProperties) -> IngestionResult:
        start = time.perf_counter()

        decision = self._admit(source.size(), source, properties)
        if decision.use_queued:
            return await self._queued_client.ingest_from_file(source, properties)

        with open(source.path, "rb") as f:
            payload = ReplayableByteSource.from_stream(f)
        stream_source = StreamSourceInfo(
            payload,
            leave_open=True,
            source_id=source.source_id,
            compression=source.compression,
            raw_size=source.raw_size,
        )
        try:
            return await self._stream_then_fallback(stream_source, payload, properties, start)
        finally:
            payload.close()

    async def _route_blob(self, source: BlobSourceInfo, properties: IngestionProperties) -> IngestionResult:
        start = time.perf_counter()

        size = source.exact_size
        if size is None and self._blob_size_resolver is not None:
            size = await self._blob_size_resolver(source)
        if size is not None:
            decision = self._admit(size, source, properties)
            if decision.use_queued:
                return await self._queued_client.ingest_from_blob(source, properties)
        else:
            log_stage(
                logger,
                Stage.ROUTE_ADMISSION,
                "Blob size unknown, trying direct path",
                source_id=source.source_id,
            )

        async def _send(endpoint, attempt):
            return await self._streaming_client.send_blob(
                endpoint,
                source,
                properties,
                request_id=client_request_id("managed.ingest_from_blob", source.source_id, attempt),
            )

        try:
            attempts = await self._direct_with_retries(_send, "managed_streaming.ingest_from_blob", source.source_id)
        except _DirectPathFailed as failed:
            result = await self._fallback(
                lambda: self._queued_client.ingest_from_blob(source, properties), source.source_id, failed
            )
        else:
            result = self._streaming_client.direct_result(source.source_id, properties, attempts)
        self._metrics.record_ingestion_duration(result.path.value, time.perf_counter() - start)
        return result

    async def ingest_from_rows(
        self, rows: Iterable[Sequence[Any]], properties: IngestionProperties
    ) -> IngestionResult:
        """Serialize rows to CSV and route them like a stream."""
        if rows is None:
            raise ConfigurationError("rows must not be None")
        if properties.data_format != DataFormat.CSV:
            properties = properties.model_copy(update={"data_format": DataFormat.CSV})
        data = rows_to_csv_bytes(rows)
        return await self.ingest_from_stream(StreamSourceInfo(io.BytesIO(data), raw_size=len(data)), properties)

    async def close(self) -> None:
        await self._streaming_client.close()
        await self._queued_client.close()

    async def __aenter__(self) -> "ManagedStreamingIngestClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # Routing
    # =========================================================================

    def _admit(self, size: int, source, properties: IngestionProperties) -> QueuingDecision:
        decision = self.queuing_policy.decide(size, source.is_compressed, properties.data_format)
        path = IngestionPath.QUEUED if decision.use_queued else IngestionPath.DIRECT
        self._metrics.record_routing_decision(path.value)
        log_stage(
            logger,
            Stage.ROUTE_ADMISSION,
            "Admission decided",
            source_id=source.source_id,
            path=path.value,
            **decision.to_dict(),
        )
        return decision

    async def _stream_then_fallback(
        self,
        source: StreamSourceInfo,
        payload: ReplayableByteSource,
        properties: IngestionProperties,
        start: float,
    ) -> IngestionResult:
        async def _send(endpoint, attempt):
            return await self._streaming_client.send_stream(
                endpoint,
                payload,
                properties,
                compressed=source.is_compressed,
                request_id=client_request_id("managed.ingest_from_stream", source.source_id, attempt),
            )

        try:
            attempts = await self._direct_with_retries(
                _send, "managed_streaming.ingest_from_stream", source.source_id, before_retry=payload.rewind
            )
        except _DirectPathFailed as failed:
            replay = StreamSourceInfo(
                payload.rewind(),
                leave_open=True,
                source_id=source.source_id,
                compression=source.compression,
                raw_size=source.raw_size if source.raw_size is not None else payload.size,
            )
            result = await self._fallback(
                lambda: self._queued_client.ingest_from_stream(replay, properties), source.source_id, failed
            )
        else:
            result = self._streaming_client.direct_result(source.source_id, properties, attempts)
        self._metrics.record_ingestion_duration(result.path.value, time.perf_counter() - start)
        return result

    async def _direct_with_retries(
        self,
        send: Callable[[Any, int], Awaitable[Any]],
        action_name: str,
        source_id: str,
        before_retry: Callable[[], Any] | None = None,
    ) -> int:
        """
        Run the direct path. Returns the number of attempts made.

        Raises:
            _DirectPathFailed: retries exhausted, or a permanent failure while
                permanent failures are not terminal
            IngestionBrokerError: permanent (when terminal) or configuration errors
        """
        attempts = 0
        history: list[AttemptRecord] = []

        async def _attempt(endpoint):
            nonlocal attempts
            attempts += 1
            return await send(endpoint, attempts)

        def _before_retry(next_attempt: int) -> None:
            log_stage(
                logger,
                Stage.ROUTE_BACKOFF,
                "Direct path attempt failed, backing off",
                source_id=source_id,
                next_attempt=next_attempt,
            )
            if before_retry is not None:
                before_retry()

        log_stage(logger, Stage.ROUTE_DIRECT, "Trying direct path", source_id=source_id, max_attempts=self.attempt_count)
        try:
            await resource_action_with_retries(
                self._streaming_client.resource_manager,
                self._streaming_client.get_endpoints(),
                _attempt,
                action_name,
                {"source_id": source_id},
                max_attempts=self.attempt_count,
                attempt_timeout=self.attempt_timeout,
                wait=self._wait,
                sleep=self._sleep,
                before_retry=_before_retry,
                history=history,
            )
        except ResourceExhaustedError as e:
            raise _DirectPathFailed("retries_exhausted", attempts) from e
        except IngestionBrokerError as e:
            if e.kind != ErrorKind.PERMANENT:
                raise
            log_stage(
                logger,
                Stage.ROUTE_PERMANENT,
                "Direct path failed permanently",
                level="error" if self.permanent_failures_terminal else "warning",
                source_id=source_id,
                attempt=attempts,
                terminal=self.permanent_failures_terminal,
                error=str(e),
            )
            if self.permanent_failures_terminal:
                raise
            raise _DirectPathFailed("permanent_failure", attempts) from e
        return attempts

    async def _fallback(
        self, queued_call: Callable[[], Awaitable[IngestionResult]], source_id: str, failed: _DirectPathFailed
    ) -> IngestionResult:
        self._metrics.record_fallback(failed.reason)
        log_stage(
            logger,
            Stage.ROUTE_FALLBACK,
            "Falling back to queued ingestion",
            level="warning",
            source_id=source_id,
            reason=failed.reason,
            direct_attempts=failed.attempts,
        )
        result = await queued_call()
        return IngestionResult(
            status=result.status,
            source_id=result.source_id,
            database=result.database,
            table=result.table,
            path=result.path,
            direct_attempts=failed.attempts,
            fallback_attempts=1,
        )
