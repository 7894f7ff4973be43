"""
Resource-Scoped Retry

Runs an action against a rotating resource with a bounded number of attempts,
reporting every outcome back to the resource manager's ranking.

MECHANISM OF ACTION:
-------------------
1.  **Rotation**:
    Attempt ``n`` (1-based) uses ``resources[(n - 1) % len(resources)]``. With
    resources interleaved across accounts, consecutive attempts hit different
    accounts; with a single resource every attempt reuses it.

2.  **Classification** (``classify_error``):
    - TRANSIENT: reported as a failure, recorded, retried on the next resource
    - PERMANENT / CONFIGURATION: reported, annotated with resource + attempt, re-raised at once
    - A per-attempt timeout counts as TRANSIENT

3.  **Exhaustion**:
    After the last transient failure a ``ResourceExhaustedError`` is raised
    listing every resource tried and the last error (kept as ``__cause__``).

4.  **Backoff**:
    Pluggable tenacity ``wait`` strategy and ``sleep`` coroutine. The queued
    path retries immediately on the next resource; the managed streaming router
    passes exponential jitter and a ``before_retry`` hook that rewinds the
    payload.

The algorithm knows nothing about queues or containers: the same function
posts messages, uploads blobs and drives the direct streaming path.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, BinaryIO, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_none,
)
from tenacity.wait import wait_base

from ingestion_broker.core.config.constants import DEFAULT_ATTEMPT_COUNT, Stage
from ingestion_broker.core.exceptions import (
    ConfigurationError,
    ErrorKind,
    IngestionBrokerError,
    ResourceExhaustedError,
    TransientBackendError,
    classify_error,
    is_retryable_error,
)
from ingestion_broker.core.interfaces import IngestionResultSink
from ingestion_broker.core.logging.logger import get_logger, log_stage
from ingestion_broker.core.monitoring.metrics_collector import get_metrics_collector
from ingestion_broker.resources.models import ContainerResource, QueueResource, ResourceWithSas

logger = get_logger(__name__)

R = TypeVar("R", bound=ResourceWithSas)
T = TypeVar("T")


@dataclass(frozen=True)
class AttemptRecord:
    """Diagnostics for one failed attempt."""

    attempt: int
    resource: str
    account: str
    error: str
    kind: ErrorKind

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt": self.attempt,
            "resource": self.resource,
            "account": self.account,
            "error": self.error,
            "kind": self.kind.value,
        }


async def resource_action_with_retries(
    resource_manager: IngestionResultSink,
    resources: Sequence[R],
    action: Callable[[R], Awaitable[T]],
    action_name: str,
    attributes: Mapping[str, Any] | None = None,
    *,
    max_attempts: int = DEFAULT_ATTEMPT_COUNT,
    attempt_timeout: float | None = None,
    wait: wait_base | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    before_retry: Callable[[int], None] | None = None,
    history: list[AttemptRecord] | None = None,
) -> T:
    """
    Run ``action`` against rotating resources until it succeeds.

    Args:
        resource_manager: Feedback sink for per-resource outcomes
        resources: Ordered, non-empty resource list
        action: Coroutine function called with the resource of the attempt
        action_name: Name used in logs, metrics and error messages
        attributes: Extra context added to logs and errors (must not hold secrets)
        max_attempts: Attempt bound N
        attempt_timeout: Seconds before an attempt counts as a transient failure
        wait: tenacity wait strategy between attempts (default: none)
        sleep: Sleep coroutine used for waits
        before_retry: Called with the upcoming attempt number before each retry
        history: Caller-owned list that receives one record per failed attempt

    Returns:
        The action's result

    Raises:
        ConfigurationError: ``resources`` is empty (nothing attempted)
        IngestionBrokerError: a permanent or configuration error from the action
        ResourceExhaustedError: every attempt failed transiently
    """
    if not resources:
        raise ConfigurationError(
            f"{action_name}: No resources were provided.", details=dict(attributes or {})
        )

    attributes = dict(attributes or {})
    history = history if history is not None else []
    metrics = get_metrics_collector()

    def _before_sleep(retry_state: RetryCallState) -> None:
        next_attempt = retry_state.attempt_number + 1
        log_stage(
            logger,
            Stage.RETRY_ATTEMPT,
            "Retrying with next resource",
            action=action_name,
            next_attempt=next_attempt,
            delay=round(retry_state.next_action.sleep if retry_state.next_action else 0.0, 3),
        )
        if before_retry is not None:
            before_retry(next_attempt)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait or wait_none(),
        retry=retry_if_exception(is_retryable_error),
        sleep=sleep,
        before_sleep=_before_sleep,
    )

    try:
        async for attempt in retrying:
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                resource = resources[(attempt_number - 1) % len(resources)]
                try:
                    if attempt_timeout is not None:
                        result = await asyncio.wait_for(action(resource), timeout=attempt_timeout)
                    else:
                        result = await action(resource)
                except Exception as e:
                    kind = classify_error(e)
                    resource_manager.report_ingestion_result(resource, False)
                    metrics.record_attempt(action_name, kind.value)
                    record = AttemptRecord(
                        attempt=attempt_number,
                        resource=resource.endpoint_without_sas,
                        account=resource.account_name,
                        error=f"{e.__class__.__name__}: {e}",
                        kind=kind,
                    )
                    history.append(record)
                    log_stage(
                        logger,
                        Stage.RETRY_FAILED,
                        f"Error during attempt {attempt_number} of {max_attempts} for {action_name}",
                        level="warning",
                        **record.to_dict(),
                        **attributes,
                    )
                    if isinstance(e, asyncio.TimeoutError) and not isinstance(e, IngestionBrokerError):
                        raise TransientBackendError.from_exception(
                            e,
                            message=f"{action_name}: attempt {attempt_number} timed out",
                            timeout=attempt_timeout,
                        ) from e
                    if kind != ErrorKind.TRANSIENT:
                        if isinstance(e, IngestionBrokerError):
                            e.with_context(
                                action=action_name,
                                resource=record.resource,
                                account=record.account,
                                attempt=attempt_number,
                            )
                    raise

                resource_manager.report_ingestion_result(resource, True)
                metrics.record_attempt(action_name, "success")
                return result
    except RetryError as retry_error:
        last_error = retry_error.last_attempt.exception()
        used = ", ".join(f"{r.resource} ({r.account})" for r in history)
        log_stage(
            logger,
            Stage.RETRY_EXHAUSTED,
            f"{action_name}: all attempts failed",
            level="error",
            attempts=len(history),
            **attributes,
        )
        raise ResourceExhaustedError(
            f"{action_name}: All {max_attempts} retries failed with last error: {last_error}. "
            f"Used resources: {used}",
            details={"attempts": [r.to_dict() for r in history], **attributes},
        ) from last_error

    # AsyncRetrying always returns or raises above
    raise AssertionError("unreachable")


# ============================================================================
# Queued-path helpers
# ============================================================================


async def post_to_queue_with_retries(
    resource_manager,
    storage_client,
    message: str,
    attributes: Mapping[str, Any] | None = None,
    max_attempts: int = DEFAULT_ATTEMPT_COUNT,
    attempt_timeout: float | None = None,
) -> QueueResource:
    """Post ``message`` to a shuffled ingestion queue; returns the queue used."""
    queues = await resource_manager.get_shuffled_queues()

    async def _post(queue: QueueResource) -> QueueResource:
        await storage_client.post_message_to_queue(queue, message)
        return queue

    return await resource_action_with_retries(
        resource_manager,
        queues,
        _post,
        "queued.post_message",
        attributes,
        max_attempts=max_attempts,
        attempt_timeout=attempt_timeout,
    )


@dataclass(frozen=True)
class UploadResult:
    blob_path: str = ""
    size: int = 0

    def __repr__(self) -> str:
        # blob_path carries the container SAS
        return f"UploadResult(size={self.size})"


async def upload_stream_to_blob_with_retries(
    resource_manager,
    storage_client,
    stream: BinaryIO,
    blob_name: str,
    compress: bool,
    max_attempts: int = DEFAULT_ATTEMPT_COUNT,
    attempt_timeout: float | None = None,
) -> UploadResult:
    """
    Upload a seekable stream to a shuffled container.

    The stream is rewound to its starting position before every attempt so
    each retry sends the full payload.
    """
    containers = await resource_manager.get_shuffled_containers()
    start = stream.tell()

    async def _upload(container: ContainerResource) -> UploadResult:
        stream.seek(start)
        size = await storage_client.upload_stream_to_blob(container, blob_name, stream, compress)
        return UploadResult(blob_path=container.blob_uri(blob_name), size=size)

    return await resource_action_with_retries(
        resource_manager,
        containers,
        _upload,
        "queued.upload_stream",
        max_attempts=max_attempts,
        attempt_timeout=attempt_timeout,
    )


async def upload_local_file_with_retries(
    resource_manager,
    storage_client,
    path: str,
    blob_name: str,
    compress: bool,
    max_attempts: int = DEFAULT_ATTEMPT_COUNT,
    attempt_timeout: float | None = None,
) -> UploadResult:
    """Upload a local file to a shuffled container."""
    containers = await resource_manager.get_shuffled_containers()

    async def _upload(container: ContainerResource) -> UploadResult:
        size = await storage_client.upload_file_to_blob(container, blob_name, path, compress)
        return UploadResult(blob_path=container.blob_uri(blob_name), size=size)

    return await resource_action_with_retries(
        resource_manager,
        containers,
        _upload,
        "queued.upload_file",
        max_attempts=max_attempts,
        attempt_timeout=attempt_timeout,
    )
