"""
Pytest Configuration and Shared Test Fixtures

This module provides reusable fakes for the broker's collaborators (management
command executor, storage client, streaming transport) and fixtures that wire
them to a resource manager with a controllable clock.
All fixtures defined here are automatically available to all test files.
"""

import random

import pytest

from ingestion_broker.core.config.settings import Settings
from ingestion_broker.ingest.models import IngestionProperties
from ingestion_broker.resources.models import StreamingEndpoint
from ingestion_broker.resources.resource_manager import ResourceManager
from tests.test_fixtures import FakeClock, FakeExecutor, FakeStorageClient, FakeStreamingTransport


# ============================================================================
# Mock Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """Settings with short intervals and near-zero backoff for unit tests."""
    return Settings(
        RESOURCES_REFRESH_INTERVAL=3600,
        RESOURCES_RETRY_INTERVAL=900,
        AUTH_TOKEN_REFRESH_INTERVAL=3600,
        AUTH_TOKEN_RETRY_INTERVAL=900,
        RESOURCES_MAX_STALENESS=6 * 3600,
        AUTH_TOKEN_MAX_STALENESS=6 * 3600,
        REFRESH_SHUTDOWN_TIMEOUT=1.0,
        STREAMING_RETRY_BASE_DELAY=0.001,
        STREAMING_RETRY_MAX_DELAY=0.01,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def storage_client():
    return FakeStorageClient()


@pytest.fixture
def streaming_transport():
    return FakeStreamingTransport()


@pytest.fixture
async def resource_manager(executor, test_settings, clock):
    """Resource manager without background timers; accessors fetch on demand."""
    manager = ResourceManager(
        executor,
        settings=test_settings,
        clock=clock,
        rng=random.Random(7),
        auto_start=False,
    )
    yield manager
    await manager.close()


@pytest.fixture
def streaming_endpoints():
    return [
        StreamingEndpoint.from_uri("https://ep1.kusto.windows.net", "ep1"),
        StreamingEndpoint.from_uri("https://ep2.kusto.windows.net", "ep2"),
        StreamingEndpoint.from_uri("https://ep3.kusto.windows.net", "ep3"),
    ]


@pytest.fixture
def ingestion_properties():
    return IngestionProperties(database="db1", table="events")
