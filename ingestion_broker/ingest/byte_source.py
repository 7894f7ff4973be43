"""
Byte sources for the ingestion paths.

- ``ReplayableByteSource``: an in-memory payload with an explicit ``rewind()``.
  The router materializes every direct-path payload into one so retries and
  the queued fallback resend identical bytes regardless of the caller's stream.
- ``ChainedStream``: a read-only stream that yields an already-consumed prefix
  followed by the remainder of the original stream.
- ``read_bounded_prefix``: reads at most ``limit`` bytes, the bounded-memory
  read used to size streams of unknown length.
"""

import io
from typing import BinaryIO

from ingestion_broker.core.config.constants import COPY_BUFFER_SIZE


def read_bounded_prefix(stream: BinaryIO, limit: int) -> bytes:
    """Read until ``limit`` bytes or end of stream, whichever comes first."""
    chunks: list[bytes] = []
    remaining = limit
    while remaining > 0:
        chunk = stream.read(min(remaining, COPY_BUFFER_SIZE))
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def remaining_length(stream: BinaryIO) -> int | None:
    """Bytes left in a seekable stream without reading them; None if not seekable."""
    try:
        if not stream.seekable():
            return None
        position = stream.tell()
        end = stream.seek(0, io.SEEK_END)
        stream.seek(position)
    except (AttributeError, OSError):
        return None
    return end - position


class ChainedStream(io.RawIOBase):
    """Read ``prefix`` first, then the rest of ``stream``."""

    def __init__(self, prefix: bytes, stream: BinaryIO):
        self._prefix = memoryview(prefix)
        self._offset = 0
        self._stream = stream

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self._offset < len(self._prefix):
            n = min(len(buffer), len(self._prefix) - self._offset)
            buffer[:n] = self._prefix[self._offset:self._offset + n]
            self._offset += n
            return n
        data = self._stream.read(len(buffer))
        if not data:
            return 0
        n = len(data)
        buffer[:n] = data
        return n

    def close(self) -> None:
        # The underlying stream belongs to the caller
        self._prefix = memoryview(b"")
        super().close()


class ReplayableByteSource(io.BytesIO):
    """In-memory payload that can be rewound to its start any number of times."""

    @classmethod
    def from_stream(cls, stream: BinaryIO, prefix: bytes = b"") -> "ReplayableByteSource":
        """Materialize ``prefix`` plus the rest of ``stream``."""
        buffer = cls()
        buffer.write(prefix)
        while True:
            chunk = stream.read(COPY_BUFFER_SIZE)
            if not chunk:
                break
            buffer.write(chunk)
        buffer.rewind()
        return buffer

    @property
    def size(self) -> int:
        with self.getbuffer() as view:
            return view.nbytes

    def rewind(self) -> "ReplayableByteSource":
        self.seek(0)
        return self
