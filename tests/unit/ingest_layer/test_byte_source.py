"""
Unit Tests for Byte Sources
"""

import io

import pytest

from ingestion_broker.ingest.byte_source import (
    ChainedStream,
    ReplayableByteSource,
    read_bounded_prefix,
    remaining_length,
)
from tests.test_fixtures import NonSeekableStream


@pytest.mark.unit
class TestReadBoundedPrefix:
    def test_stops_at_limit(self):
        stream = io.BytesIO(b"x" * 100)
        assert read_bounded_prefix(stream, 10) == b"x" * 10
        assert stream.tell() == 10

    def test_short_stream(self):
        assert read_bounded_prefix(io.BytesIO(b"abc"), 10) == b"abc"

    def test_reads_across_chunks(self):
        data = bytes(range(256)) * 200
        assert read_bounded_prefix(NonSeekableStream(data), 40000) == data[:40000]


@pytest.mark.unit
class TestRemainingLength:
    def test_seekable_stream_measured_from_position(self):
        stream = io.BytesIO(b"0123456789")
        stream.seek(4)
        assert remaining_length(stream) == 6
        assert stream.tell() == 4

    def test_non_seekable_is_unknown(self):
        assert remaining_length(NonSeekableStream(b"abc")) is None


@pytest.mark.unit
class TestChainedStream:
    def test_prefix_then_remainder(self):
        source = io.BytesIO(b"hello world")
        prefix = source.read(5)
        chained = io.BufferedReader(ChainedStream(prefix, source))
        assert chained.read() == b"hello world"

    def test_close_leaves_underlying_stream_open(self):
        source = io.BytesIO(b"abc")
        chained = ChainedStream(b"", source)
        chained.close()
        assert not source.closed


@pytest.mark.unit
class TestReplayableByteSource:
    def test_from_stream_with_prefix(self):
        payload = ReplayableByteSource.from_stream(io.BytesIO(b"def"), prefix=b"abc")
        assert payload.read() == b"abcdef"
        assert payload.size == 6

    def test_rewind_replays_identical_bytes(self):
        payload = ReplayableByteSource.from_stream(NonSeekableStream(b"payload"))
        first = payload.read()
        assert payload.rewind().read() == first == b"payload"

    def test_size_does_not_move_position(self):
        payload = ReplayableByteSource(b"abc")
        payload.read(1)
        assert payload.size == 3
        assert payload.read() == b"bc"
