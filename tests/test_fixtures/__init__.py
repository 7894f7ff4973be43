"""
Test Fixtures Package

Shared fakes for consistent testing across all modules.
"""

from .fakes import (
    FakeClock,
    FakeExecutor,
    FakeStorageClient,
    FakeStreamingTransport,
    NonSeekableStream,
    default_resource_rows,
    resource_row,
)

__all__ = [
    "FakeClock",
    "FakeExecutor",
    "FakeStorageClient",
    "FakeStreamingTransport",
    "NonSeekableStream",
    "default_resource_rows",
    "resource_row",
]
