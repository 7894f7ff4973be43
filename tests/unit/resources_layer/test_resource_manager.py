"""
Unit Tests for ResourceManager

Tests snapshot publication, staleness refusal, independent refresh of
resources and the identity token, and reliability feedback.
"""

import random

import pytest

from ingestion_broker.core.config.constants import (
    IDENTITY_TOKEN_COMMAND,
    INGESTION_RESOURCES_COMMAND,
    ResourceKind,
)
from ingestion_broker.core.exceptions import (
    ResourceUnavailableError,
    StaleResourcesError,
    TransientBackendError,
)
from ingestion_broker.resources.models import StreamingEndpoint
from ingestion_broker.resources.resource_manager import ResourceManager
from tests.test_fixtures import resource_row


@pytest.mark.unit
class TestInitialFetch:
    @pytest.mark.asyncio
    async def test_accessors_fetch_on_demand(self, resource_manager, executor):
        queues = await resource_manager.get_shuffled_queues()
        containers = await resource_manager.get_shuffled_containers()

        assert {q.name for q in queues} == {"q1", "q2"}
        assert {c.name for c in containers} == {"c1", "c2"}
        assert executor.count(INGESTION_RESOURCES_COMMAND) == 1

    @pytest.mark.asyncio
    async def test_identity_token(self, resource_manager):
        assert await resource_manager.get_identity_token() == "identity-token-1"

    @pytest.mark.asyncio
    async def test_never_refreshed_raises_unavailable(self, resource_manager, executor):
        error = TransientBackendError("endpoint down")
        executor.fail_next(INGESTION_RESOURCES_COMMAND, error)

        with pytest.raises(ResourceUnavailableError) as exc_info:
            await resource_manager.get_shuffled_queues()

        assert exc_info.value.__cause__ is error
        assert resource_manager.snapshot is None

    @pytest.mark.asyncio
    async def test_next_accessor_retries_after_failed_first_fetch(self, resource_manager, executor):
        executor.fail_next(INGESTION_RESOURCES_COMMAND, TransientBackendError("down"))
        with pytest.raises(ResourceUnavailableError):
            await resource_manager.get_shuffled_queues()

        assert len(await resource_manager.get_shuffled_queues()) == 2


@pytest.mark.unit
class TestRefreshFailures:
    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_snapshot(self, resource_manager, executor):
        await resource_manager.get_shuffled_queues()
        before = resource_manager.snapshot
        executor.fail_next(INGESTION_RESOURCES_COMMAND, TransientBackendError("down"))

        assert await resource_manager.refresh_resources_task.refresh_now() is False

        assert resource_manager.snapshot is before
        assert len(await resource_manager.get_shuffled_queues()) == 2

    @pytest.mark.asyncio
    async def test_malformed_rows_keep_previous_snapshot(self, resource_manager, executor):
        await resource_manager.get_shuffled_queues()
        before = resource_manager.snapshot
        executor.resource_rows = [{"Unexpected": "x"}]

        assert await resource_manager.refresh_resources_task.refresh_now() is False

        assert resource_manager.snapshot is before

    @pytest.mark.asyncio
    async def test_result_without_containers_is_rejected(self, resource_manager, executor):
        executor.resource_rows = [resource_row(ResourceKind.QUEUE, "acct1", "q1")]

        with pytest.raises(ResourceUnavailableError):
            await resource_manager.get_shuffled_queues()

    @pytest.mark.asyncio
    async def test_unknown_kinds_are_ignored(self, resource_manager, executor):
        executor.resource_rows.append(resource_row(ResourceKind.STATUS_TABLE, "acct1", "status"))
        queues = await resource_manager.get_shuffled_queues()
        assert len(queues) == 2

    @pytest.mark.asyncio
    async def test_stale_snapshot_is_refused(self, resource_manager, executor, clock, test_settings):
        await resource_manager.get_shuffled_queues()
        executor.fail_next(INGESTION_RESOURCES_COMMAND, TransientBackendError("down"))
        await resource_manager.refresh_resources_task.refresh_now()
        clock.advance(test_settings.RESOURCES_MAX_STALENESS + 1)

        with pytest.raises(StaleResourcesError) as exc_info:
            await resource_manager.get_shuffled_containers()

        assert exc_info.value.details["task"] == ResourceManager.RESOURCES_TASK
        assert isinstance(exc_info.value.__cause__, TransientBackendError)

    @pytest.mark.asyncio
    async def test_snapshot_within_ceiling_is_served(self, resource_manager, clock, test_settings):
        await resource_manager.get_shuffled_queues()
        clock.advance(test_settings.RESOURCES_MAX_STALENESS - 1)
        assert len(await resource_manager.get_shuffled_queues()) == 2


@pytest.mark.unit
class TestIndependentTasks:
    @pytest.mark.asyncio
    async def test_token_failure_does_not_block_resources(self, resource_manager, executor):
        executor.fail_next(IDENTITY_TOKEN_COMMAND, TransientBackendError("down"))

        with pytest.raises(ResourceUnavailableError):
            await resource_manager.get_identity_token()

        assert len(await resource_manager.get_shuffled_queues()) == 2

    @pytest.mark.asyncio
    async def test_token_refresh_keeps_resources(self, resource_manager, executor):
        await resource_manager.get_shuffled_queues()
        resources_before = resource_manager.snapshot.queues_by_account
        executor.token = "identity-token-2"

        await resource_manager.refresh_auth_token_task.refresh_now()

        assert await resource_manager.get_identity_token() == "identity-token-2"
        assert resource_manager.snapshot.queues_by_account is resources_before

    @pytest.mark.asyncio
    async def test_empty_token_result_is_refresh_failure(self, resource_manager, executor):
        executor.token = ""
        with pytest.raises(ResourceUnavailableError):
            await resource_manager.get_identity_token()


@pytest.mark.unit
class TestRanking:
    @pytest.mark.asyncio
    async def test_reported_failures_move_account_back(self, resource_manager):
        queues = await resource_manager.get_shuffled_queues()
        bad = next(q for q in queues if q.account_name == "acct1")
        good = next(q for q in queues if q.account_name == "acct2")

        for _ in range(3):
            resource_manager.report_ingestion_result(bad, False)
            resource_manager.report_ingestion_result(good, True)

        assert [q.account_name for q in await resource_manager.get_shuffled_queues()] == ["acct2", "acct1"]
        assert resource_manager.get_account_rank("acct1") < resource_manager.get_account_rank("acct2")

    @pytest.mark.asyncio
    async def test_rank_resources_orders_streaming_endpoints(self, resource_manager, streaming_endpoints):
        ep1, ep2, ep3 = streaming_endpoints
        resource_manager.report_ingestion_result(ep1, False)
        resource_manager.report_ingestion_result(ep3, True)

        ranked = resource_manager.rank_resources(streaming_endpoints)

        assert ranked == [ep3, ep2, ep1]

    @pytest.mark.asyncio
    async def test_refreshed_accounts_start_neutral(self, resource_manager):
        await resource_manager.get_shuffled_queues()
        assert resource_manager.get_account_rank("acct1") == pytest.approx(0.5)


@pytest.mark.unit
class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_starts_and_stops_tasks(self, executor, test_settings, clock):
        async with ResourceManager(executor, settings=test_settings, clock=clock, rng=random.Random(1)) as manager:
            assert manager.refresh_resources_task.is_running
            assert manager.refresh_auth_token_task.is_running
            assert await manager.refresh_resources_task.wait_until_refreshed_at_least_once(timeout=1.0)

        assert not manager.refresh_resources_task.is_running
        assert not manager.refresh_auth_token_task.is_running

    @pytest.mark.asyncio
    async def test_snapshot_readable_after_close(self, resource_manager):
        await resource_manager.get_shuffled_queues()
        await resource_manager.close()
        assert len(resource_manager.snapshot.queues) == 2

    @pytest.mark.asyncio
    async def test_closed_manager_without_snapshot_does_not_refresh(self, resource_manager, executor):
        await resource_manager.close()

        with pytest.raises(ResourceUnavailableError, match="closed"):
            await resource_manager.get_shuffled_queues()
        with pytest.raises(ResourceUnavailableError, match="closed"):
            await resource_manager.get_shuffled_containers()
        with pytest.raises(ResourceUnavailableError, match="closed"):
            await resource_manager.get_identity_token()

        assert executor.count(INGESTION_RESOURCES_COMMAND) == 0
        assert executor.count(IDENTITY_TOKEN_COMMAND) == 0

    @pytest.mark.asyncio
    async def test_closed_manager_serves_existing_snapshot(self, resource_manager, executor):
        await resource_manager.get_shuffled_queues()
        await resource_manager.close()

        assert {q.name for q in await resource_manager.get_shuffled_queues()} == {"q1", "q2"}
        assert executor.count(INGESTION_RESOURCES_COMMAND) == 1

    @pytest.mark.asyncio
    async def test_health_status(self, resource_manager):
        assert resource_manager.health_status()["status"] == "unhealthy"

        await resource_manager.get_shuffled_queues()
        await resource_manager.get_identity_token()
        health = resource_manager.health_status()

        assert health["status"] == "healthy"
        assert health["resources"]["refreshed_at_least_once"] is True
        assert set(health["accounts"]) == {"acct1", "acct2"}

    def test_streaming_endpoint_repr_hides_credentials(self):
        endpoint = StreamingEndpoint.from_uri("https://ep.kusto.windows.net/x?sig=abc", "ep")
        assert "sig" not in repr(endpoint)
        assert str(endpoint) == "https://ep.kusto.windows.net/x"
