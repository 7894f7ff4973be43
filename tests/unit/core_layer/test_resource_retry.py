"""
Unit Tests for Resource-Scoped Retry

Tests rotation over resources, permanent-error short-circuit, exhaustion
history and per-attempt timeouts.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from ingestion_broker.core.exceptions import (
    ConfigurationError,
    PermanentBackendError,
    ResourceExhaustedError,
    ThrottledError,
    TransientBackendError,
)
from ingestion_broker.core.resilience.resource_retry import (
    AttemptRecord,
    post_to_queue_with_retries,
    resource_action_with_retries,
    upload_stream_to_blob_with_retries,
)
from ingestion_broker.resources.models import QueueResource


def make_queues(*accounts):
    return [
        QueueResource.from_uri(f"https://{a}.queue.core.windows.net/q?sig=secret", a) for a in accounts
    ]


class RecordingAction:
    """Fails with the scripted errors in order, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.visited = []

    async def __call__(self, resource):
        self.visited.append(resource)
        if self.errors:
            raise self.errors.pop(0)
        return f"ok:{resource.account_name}"


@pytest.fixture
def sink():
    return MagicMock()


@pytest.mark.unit
class TestRotation:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, sink):
        queues = make_queues("a", "b")
        action = RecordingAction()

        result = await resource_action_with_retries(sink, queues, action, "test")

        assert result == "ok:a"
        assert action.visited == [queues[0]]
        sink.report_ingestion_result.assert_called_once_with(queues[0], True)

    @pytest.mark.asyncio
    async def test_single_resource_is_reused_every_attempt(self, sink):
        queues = make_queues("a")
        action = RecordingAction(ThrottledError("1"), ThrottledError("2"))

        await resource_action_with_retries(sink, queues, action, "test", max_attempts=3)

        assert action.visited == [queues[0]] * 3

    @pytest.mark.asyncio
    async def test_more_resources_than_attempts_never_repeats(self, sink):
        queues = make_queues("a", "b", "c", "d", "e")
        action = RecordingAction(*(TransientBackendError(str(i)) for i in range(3)))

        with pytest.raises(ResourceExhaustedError):
            await resource_action_with_retries(sink, queues, action, "test", max_attempts=3)

        assert action.visited == queues[:3]
        assert len(set(action.visited)) == 3

    @pytest.mark.asyncio
    async def test_attempts_wrap_around_resources(self, sink):
        queues = make_queues("a", "b")
        action = RecordingAction(*(TransientBackendError(str(i)) for i in range(4)))

        with pytest.raises(ResourceExhaustedError):
            await resource_action_with_retries(sink, queues, action, "test", max_attempts=4)

        assert action.visited == [queues[0], queues[1], queues[0], queues[1]]

    @pytest.mark.asyncio
    async def test_every_outcome_is_reported(self, sink):
        queues = make_queues("a", "b")
        action = RecordingAction(ThrottledError("busy"))

        await resource_action_with_retries(sink, queues, action, "test")

        assert sink.report_ingestion_result.call_args_list[0].args == (queues[0], False)
        assert sink.report_ingestion_result.call_args_list[1].args == (queues[1], True)

    @pytest.mark.asyncio
    async def test_empty_resources_is_configuration_error(self, sink):
        action = RecordingAction()

        with pytest.raises(ConfigurationError):
            await resource_action_with_retries(sink, [], action, "test")

        assert action.visited == []
        sink.report_ingestion_result.assert_not_called()


@pytest.mark.unit
class TestShortCircuit:
    @pytest.mark.asyncio
    async def test_permanent_error_stops_after_one_attempt(self, sink):
        queues = make_queues("a", "b", "c")
        action = RecordingAction(PermanentBackendError("bad data"))

        with pytest.raises(PermanentBackendError) as exc_info:
            await resource_action_with_retries(sink, queues, action, "test", max_attempts=3)

        assert action.visited == [queues[0]]
        assert exc_info.value.details["attempt"] == 1
        assert exc_info.value.details["account"] == "a"
        assert "sig=" not in exc_info.value.details["resource"]

    @pytest.mark.asyncio
    async def test_configuration_error_from_action_is_not_retried(self, sink):
        queues = make_queues("a", "b")
        action = RecordingAction(ValueError("bad argument"))

        with pytest.raises(ValueError):
            await resource_action_with_retries(sink, queues, action, "test")

        assert len(action.visited) == 1


@pytest.mark.unit
class TestExhaustion:
    @pytest.mark.asyncio
    async def test_exhaustion_carries_history_and_cause(self, sink):
        queues = make_queues("a", "b", "c")
        last = ThrottledError("third")
        action = RecordingAction(ThrottledError("first"), ConnectionError("second"), last)
        history: list[AttemptRecord] = []

        with pytest.raises(ResourceExhaustedError) as exc_info:
            await resource_action_with_retries(
                sink, queues, action, "test", {"source_id": "s1"}, max_attempts=3, history=history
            )

        error = exc_info.value
        assert error.__cause__ is last
        assert [a["account"] for a in error.details["attempts"]] == ["a", "b", "c"]
        assert [r.attempt for r in history] == [1, 2, 3]
        assert error.details["source_id"] == "s1"
        assert "third" in error.message
        assert "secret" not in error.message

    @pytest.mark.asyncio
    async def test_wait_strategy_drives_sleep(self, sink):
        from tenacity import wait_fixed

        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        retried = []
        queues = make_queues("a", "b", "c")
        action = RecordingAction(ThrottledError("1"), ThrottledError("2"))

        await resource_action_with_retries(
            sink,
            queues,
            action,
            "test",
            wait=wait_fixed(0.5),
            sleep=fake_sleep,
            before_retry=retried.append,
        )

        assert sleeps == [0.5, 0.5]
        assert retried == [2, 3]


@pytest.mark.unit
class TestTimeout:
    @pytest.mark.asyncio
    async def test_timeout_is_transient_and_retried(self, sink):
        queues = make_queues("a", "b")
        calls = []

        async def action(resource):
            calls.append(resource)
            if len(calls) == 1:
                await asyncio.sleep(1)
            return "done"

        result = await resource_action_with_retries(sink, queues, action, "test", attempt_timeout=0.01)

        assert result == "done"
        assert calls == queues
        sink.report_ingestion_result.assert_any_call(queues[0], False)

    @pytest.mark.asyncio
    async def test_timeouts_until_exhaustion(self, sink):
        queues = make_queues("a")

        async def action(resource):
            await asyncio.sleep(1)

        with pytest.raises(ResourceExhaustedError) as exc_info:
            await resource_action_with_retries(sink, queues, action, "test", max_attempts=2, attempt_timeout=0.01)

        assert isinstance(exc_info.value.__cause__, TransientBackendError)


@pytest.mark.unit
class TestQueuedHelpers:
    @pytest.mark.asyncio
    async def test_post_to_queue_uses_shuffled_queues(self, resource_manager, storage_client):
        storage_client.fail_account("acct1", ThrottledError("busy"), times=2)
        storage_client.fail_account("acct2", ThrottledError("busy"), times=2)

        with pytest.raises(ResourceExhaustedError):
            await post_to_queue_with_retries(resource_manager, storage_client, "{}")

        assert storage_client.messages == []

    @pytest.mark.asyncio
    async def test_upload_rewinds_stream_between_attempts(self, resource_manager, storage_client):
        import io

        first = (await resource_manager.get_shuffled_containers())[0]
        storage_client.fail_account(first.account_name, TransientBackendError("reset"))
        stream = io.BytesIO(b"a,b,c\n")

        result = await upload_stream_to_blob_with_retries(
            resource_manager, storage_client, stream, "blob.csv.gz", compress=True
        )

        assert result.size == 6
        assert storage_client.uploads[0][2] == b"a,b,c\n"
        assert "sig" not in repr(result)
