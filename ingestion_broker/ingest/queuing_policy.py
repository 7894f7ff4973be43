"""
Admission Policy (Queuing Decision)

Pre-flight check run before the direct path is tried. It is a pure function of
``(size, compressed, data_format)`` and the policy's factor and table: it never
reads the payload and holds no state.

Rules:
    estimated_raw_size  = size * compression_ratio(format)   if compressed
                        = size                                otherwise
    effective_threshold = raw_size_threshold(format) * factor
    use_queued          = size > max_streaming_size
                          or estimated_raw_size > effective_threshold

``max_streaming_size`` caps the transmitted bytes and is not scaled by the
factor. Per-format thresholds and compression ratios are policy tuning and
live in a table (``FormatSizePolicy``) that callers may override.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from ingestion_broker.core.config.constants import DEFAULT_RAW_SIZE_THRESHOLD_BYTES, MAX_STREAMING_SIZE_BYTES
from ingestion_broker.core.exceptions import ConfigurationError
from ingestion_broker.ingest.models import DataFormat


@dataclass(frozen=True)
class FormatSizePolicy:
    """Size heuristics for one data format."""

    raw_size_threshold: int = DEFAULT_RAW_SIZE_THRESHOLD_BYTES
    # Expected raw/compressed size ratio for gzip/zip payloads of this format
    compression_ratio: float = 10.0


# Columnar and binary formats are already compact; compressing them again gains little.
_BINARY_POLICY = FormatSizePolicy(compression_ratio=1.5)
_JSON_POLICY = FormatSizePolicy(compression_ratio=8.0)

DEFAULT_FORMAT_POLICIES: Mapping[DataFormat, FormatSizePolicy] = MappingProxyType(
    {
        **{fmt: _BINARY_POLICY for fmt in DataFormat if fmt.is_binary},
        **{fmt: _JSON_POLICY for fmt in DataFormat if fmt.is_json},
    }
)


@dataclass(frozen=True)
class QueuingDecision:
    """Outcome of the admission check; carries the numbers it was based on."""

    use_queued: bool
    size: int
    estimated_raw_size: float
    effective_threshold: float
    reason: str

    def to_dict(self) -> dict:
        return {
            "use_queued": self.use_queued,
            "size": self.size,
            "estimated_raw_size": self.estimated_raw_size,
            "effective_threshold": self.effective_threshold,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class QueuingPolicy:
    """
    Decides whether a payload goes straight to the queued path.

    Args:
        factor: Scales every raw size threshold (default 1.0)
        max_streaming_size: Transmitted-size ceiling for the direct path
        default_policy: Heuristics for formats missing from ``format_policies``
        format_policies: Per-format overrides
    """

    factor: float = 1.0
    max_streaming_size: int = MAX_STREAMING_SIZE_BYTES
    default_policy: FormatSizePolicy = field(default_factory=FormatSizePolicy)
    format_policies: Mapping[DataFormat, FormatSizePolicy] = field(default_factory=lambda: DEFAULT_FORMAT_POLICIES)

    def __post_init__(self) -> None:
        if self.factor <= 0:
            raise ConfigurationError("Queuing policy factor must be positive", details={"factor": self.factor})
        if self.max_streaming_size <= 0:
            raise ConfigurationError("max_streaming_size must be positive")

    @classmethod
    def from_settings(cls, streaming_settings) -> "QueuingPolicy":
        threshold = streaming_settings.RAW_SIZE_THRESHOLD
        return cls(
            factor=streaming_settings.QUEUING_POLICY_FACTOR,
            max_streaming_size=streaming_settings.MAX_STREAMING_SIZE,
            default_policy=FormatSizePolicy(raw_size_threshold=threshold),
            format_policies=MappingProxyType(
                {fmt: replace(policy, raw_size_threshold=threshold) for fmt, policy in DEFAULT_FORMAT_POLICIES.items()}
            ),
        )

    def with_factor(self, factor: float) -> "QueuingPolicy":
        return replace(self, factor=factor)

    def policy_for(self, data_format: DataFormat) -> FormatSizePolicy:
        return self.format_policies.get(data_format, self.default_policy)

    def effective_threshold(self, data_format: DataFormat) -> float:
        return self.policy_for(data_format).raw_size_threshold * self.factor

    def estimated_raw_size(self, size: int, compressed: bool, data_format: DataFormat) -> float:
        if compressed:
            return size * self.policy_for(data_format).compression_ratio
        return float(size)

    def decide(self, size: int, compressed: bool, data_format: DataFormat) -> QueuingDecision:
        if size < 0:
            raise ConfigurationError("Payload size must not be negative", details={"size": size})

        estimated = self.estimated_raw_size(size, compressed, data_format)
        threshold = self.effective_threshold(data_format)

        if size > self.max_streaming_size:
            use_queued, reason = True, "exceeds_max_streaming_size"
        elif estimated > threshold:
            use_queued, reason = True, "exceeds_raw_size_threshold"
        else:
            use_queued, reason = False, "within_limits"

        return QueuingDecision(
            use_queued=use_queued,
            size=size,
            estimated_raw_size=estimated,
            effective_threshold=threshold,
            reason=reason,
        )

    def should_use_queued(self, size: int, compressed: bool, data_format: DataFormat) -> bool:
        return self.decide(size, compressed, data_format).use_queued
