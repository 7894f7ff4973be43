"""
Ingestion request and result models.

Sources describe *where* the payload comes from (stream, local file, blob);
``IngestionProperties`` describes *where it goes* and how it is interpreted.
"""

import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO

from pydantic import BaseModel, Field, ValidationError, field_validator

from ingestion_broker.core.config.constants import IngestionPath, OperationStatus
from ingestion_broker.core.exceptions import ConfigurationError


class DataFormat(str, Enum):
    """Payload formats accepted by the backend."""

    CSV = "csv"
    TSV = "tsv"
    SCSV = "scsv"
    SOHSV = "sohsv"
    PSV = "psv"
    TXT = "txt"
    RAW = "raw"
    TSVE = "tsve"
    JSON = "json"
    MULTIJSON = "multijson"
    SINGLEJSON = "singlejson"
    W3CLOGFILE = "w3clogfile"
    AVRO = "avro"
    APACHEAVRO = "apacheavro"
    PARQUET = "parquet"
    ORC = "orc"

    @property
    def is_binary(self) -> bool:
        """Binary formats are compressed internally and are sent as-is."""
        return self in _BINARY_FORMATS

    @property
    def is_json(self) -> bool:
        return self in _JSON_FORMATS


_BINARY_FORMATS = frozenset({DataFormat.AVRO, DataFormat.APACHEAVRO, DataFormat.PARQUET, DataFormat.ORC})
_JSON_FORMATS = frozenset({DataFormat.JSON, DataFormat.MULTIJSON, DataFormat.SINGLEJSON})


class CompressionType(str, Enum):
    GZ = "gz"
    ZIP = "zip"

    @classmethod
    def from_path(cls, path: str) -> "CompressionType | None":
        """Infer compression from a file or blob name's extension."""
        # Blob paths may carry a SAS query string
        name = path.split("?", 1)[0].lower()
        if name.endswith(".gz"):
            return cls.GZ
        if name.endswith(".zip"):
            return cls.ZIP
        return None


class ReportLevel(str, Enum):
    FAILURES_ONLY = "FailuresOnly"
    DO_NOT_REPORT = "DoNotReport"
    FAILURES_AND_SUCCESSES = "FailuresAndSuccesses"


class ReportMethod(str, Enum):
    QUEUE = "Queue"
    TABLE = "Table"
    QUEUE_AND_TABLE = "QueueAndTable"


# Keys the queued message sets itself; callers may not override them
RESERVED_ADDITIONAL_PROPERTIES = frozenset({"format", "ingestionMappingReference", "authorizationContext"})


class IngestionProperties(BaseModel):
    """
    Target table and interpretation of one ingestion request.

    Validation runs at construction; ``ensure_valid()`` re-checks the
    invariants that must hold before any resource is touched.
    """

    model_config = {"frozen": True}

    database: str = Field(..., description="Target database")
    table: str = Field(..., description="Target table")
    data_format: DataFormat = Field(default=DataFormat.CSV, description="Payload format")
    ingestion_mapping_reference: str | None = Field(
        default=None, description="Name of a pre-created ingestion mapping"
    )
    flush_immediately: bool = False
    report_level: ReportLevel = ReportLevel.FAILURES_ONLY
    report_method: ReportMethod = ReportMethod.QUEUE
    additional_properties: dict[str, str] = Field(default_factory=dict)

    @field_validator("database", "table")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v

    def ensure_valid(self) -> None:
        """Raise ``ConfigurationError`` if the properties cannot be ingested."""
        for name in ("database", "table"):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ConfigurationError(f"IngestionProperties.{name} must not be blank")
        reserved = RESERVED_ADDITIONAL_PROPERTIES.intersection(self.additional_properties)
        if reserved:
            raise ConfigurationError(
                "additional_properties may not set reserved keys",
                details={"keys": sorted(reserved)},
            )

    @classmethod
    def create(cls, **kwargs: Any) -> "IngestionProperties":
        """Build properties, converting validation failures to ``ConfigurationError``."""
        try:
            return cls(**kwargs)
        except ValidationError as e:
            raise ConfigurationError.from_exception(e, message="Invalid ingestion properties") from e


# ============================================================================
# Sources
# ============================================================================


def _new_source_id() -> str:
    return str(uuid.uuid4())


@dataclass
class StreamSourceInfo:
    """
    An in-memory or network stream.

    The stream need not be seekable. ``raw_size`` is the uncompressed size when
    the caller knows it; otherwise the router measures a bounded prefix.
    """

    stream: BinaryIO
    leave_open: bool = False
    source_id: str = field(default_factory=_new_source_id)
    compression: CompressionType | None = None
    raw_size: int | None = None

    @property
    def is_compressed(self) -> bool:
        return self.compression is not None

    def validate(self) -> None:
        if self.stream is None:
            raise ConfigurationError("StreamSourceInfo.stream must not be None")
        if self.raw_size is not None and self.raw_size < 0:
            raise ConfigurationError("StreamSourceInfo.raw_size must not be negative")

    def close(self) -> None:
        if not self.leave_open:
            self.stream.close()


@dataclass
class FileSourceInfo:
    path: str
    raw_size: int | None = None
    source_id: str = field(default_factory=_new_source_id)

    @property
    def compression(self) -> CompressionType | None:
        return CompressionType.from_path(self.path)

    @property
    def is_compressed(self) -> bool:
        return self.compression is not None

    @property
    def file_name(self) -> str:
        return os.path.basename(self.path)

    def validate(self) -> None:
        if not self.path or not self.path.strip():
            raise ConfigurationError("FileSourceInfo.path must not be blank")
        if not os.path.isfile(self.path):
            raise ConfigurationError("File does not exist", details={"path": self.path})

    def size(self) -> int:
        return os.stat(self.path).st_size


@dataclass
class BlobSourceInfo:
    """
    A blob already in storage. ``blob_path`` includes the read credential.

    ``exact_size`` is the stored (transmitted) size; when it is known the
    router decides admission without touching the blob.
    """

    blob_path: str = field(repr=False)
    exact_size: int | None = None
    compression: CompressionType | None = None
    source_id: str = field(default_factory=_new_source_id)

    def __post_init__(self) -> None:
        if self.compression is None and self.blob_path:
            self.compression = CompressionType.from_path(self.blob_path)

    @property
    def is_compressed(self) -> bool:
        return self.compression is not None

    @property
    def blob_name(self) -> str:
        return self.blob_path.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]

    def validate(self) -> None:
        if not self.blob_path or not self.blob_path.strip():
            raise ConfigurationError("BlobSourceInfo.blob_path must not be blank")
        if self.exact_size is not None and self.exact_size < 0:
            raise ConfigurationError("BlobSourceInfo.exact_size must not be negative")


# ============================================================================
# Result
# ============================================================================


@dataclass(frozen=True)
class IngestionResult:
    """Terminal outcome of one ingestion request."""

    status: OperationStatus
    source_id: str
    database: str
    table: str
    path: IngestionPath
    direct_attempts: int = 0
    fallback_attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "source_id": self.source_id,
            "database": self.database,
            "table": self.table,
            "path": self.path.value,
            "direct_attempts": self.direct_attempts,
            "fallback_attempts": self.fallback_attempts,
        }
