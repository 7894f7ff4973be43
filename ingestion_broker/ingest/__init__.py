"""Ingestion clients: queued (durable), streaming (direct) and the managed router."""

from ingestion_broker.ingest.byte_source import ChainedStream, ReplayableByteSource, read_bounded_prefix
from ingestion_broker.ingest.managed_streaming_client import ManagedStreamingIngestClient
from ingestion_broker.ingest.models import (
    BlobSourceInfo,
    CompressionType,
    DataFormat,
    FileSourceInfo,
    IngestionProperties,
    IngestionResult,
    ReportLevel,
    ReportMethod,
    StreamSourceInfo,
)
from ingestion_broker.ingest.queued_client import QueuedIngestClient
from ingestion_broker.ingest.queuing_policy import FormatSizePolicy, QueuingDecision, QueuingPolicy
from ingestion_broker.ingest.streaming_client import StreamingIngestClient

__all__ = [
    "BlobSourceInfo",
    "ChainedStream",
    "CompressionType",
    "DataFormat",
    "FileSourceInfo",
    "FormatSizePolicy",
    "IngestionProperties",
    "IngestionResult",
    "ManagedStreamingIngestClient",
    "QueuedIngestClient",
    "QueuingDecision",
    "QueuingPolicy",
    "ReplayableByteSource",
    "ReportLevel",
    "ReportMethod",
    "StreamSourceInfo",
    "StreamingIngestClient",
    "read_bounded_prefix",
]
