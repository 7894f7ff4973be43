"""
Resource Manager - Fresh, Ranked Ingestion Resources

Keeps a published ``ResourceSnapshot`` of ingestion queues, temporary blob
containers and the identity token, and serves it to ingestion calls without
making them wait for a refresh.

Architecture:
    ResourceManager (Public API)
        ├── RefreshTask "resources"   (.get ingestion resources)
        ├── RefreshTask "auth_token"  (.get kusto identity token)
        ├── ResourceSnapshot          (immutable, swapped as a whole)
        └── RankedStorageAccountSet   (reliability feedback sink)

Flow:
    1. First accessor starts both refresh tasks (or call ``start()``)
    2. Each task fetches on its own timer and publishes a new snapshot
    3. Accessors read the current snapshot reference; if nothing was ever
       published they await one refresh themselves
    4. Snapshots older than the staleness ceiling are refused
    5. Ingestion paths report per-resource outcomes, which reorder accounts
       for future calls

Concurrency:
    The snapshot is single-writer (the refresh tasks), many-reader. Publication
    builds a new snapshot and swaps the reference with no await in between, so
    readers see either the old or the new snapshot in full. Rank updates take a
    short lock inside the ranking table and never hold it across I/O.
"""

import random
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from ingestion_broker.core.config.constants import (
    ACCOUNT_NAME_COLUMN,
    AUTHORIZATION_CONTEXT_COLUMN,
    IDENTITY_TOKEN_COMMAND,
    INGESTION_RESOURCES_COMMAND,
    RESOURCE_TYPE_COLUMN,
    STORAGE_ROOT_COLUMN,
    ResourceKind,
    Stage,
)
from ingestion_broker.core.config.settings import Settings, get_settings
from ingestion_broker.core.exceptions import (
    RefreshError,
    ResourceUnavailableError,
    StaleResourcesError,
)
from ingestion_broker.core.interfaces import ManagementCommandExecutor
from ingestion_broker.core.logging.logger import get_logger, log_stage
from ingestion_broker.core.monitoring.metrics_collector import MetricsCollector, get_metrics_collector
from ingestion_broker.resources.models import (
    AuthToken,
    ContainerResource,
    QueueResource,
    ResourceSnapshot,
    ResourceWithSas,
)
from ingestion_broker.resources.ranking import (
    RankedStorageAccountSet,
    get_shuffled_resources,
    group_and_shuffle,
)
from ingestion_broker.resources.refresh_task import RefreshTask

logger = get_logger(__name__)


class ResourceManager:
    """
    Broker of ingestion resources and the identity token.

    Args:
        executor: Runs management commands against the ingestion endpoint
        settings: Settings (defaults to the global settings)
        clock: Monotonic time source (injectable for staleness tests)
        rng: Random source for shuffling (injectable for deterministic tests)
        auto_start: Start the refresh tasks on first access

    Usage:
        async with ResourceManager(executor) as manager:
            queues = await manager.get_shuffled_queues()
            ...
            manager.report_ingestion_result(queues[0], success=True)
    """

    RESOURCES_TASK = "resources"
    AUTH_TOKEN_TASK = "auth_token"

    def __init__(
        self,
        executor: ManagementCommandExecutor,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
        metrics: MetricsCollector | None = None,
        auto_start: bool = True,
    ):
        self._executor = executor
        self._settings = (settings or get_settings()).resource_manager
        self._clock = clock
        self._rng = rng or random.Random()
        self._metrics = metrics or get_metrics_collector()
        self._auto_start = auto_start
        self._closed = False

        self._snapshot: ResourceSnapshot | None = None
        self._ranked_accounts = RankedStorageAccountSet(
            bucket_count=self._settings.RANKING_BUCKET_COUNT,
            bucket_duration=self._settings.RANKING_BUCKET_DURATION,
            clock=clock,
            rng=self._rng,
        )

        self.refresh_resources_task = RefreshTask(
            self.RESOURCES_TASK,
            self._refresh_ingestion_resources,
            interval=self._settings.RESOURCES_REFRESH_INTERVAL,
            retry_interval=self._settings.RESOURCES_RETRY_INTERVAL,
            clock=clock,
            metrics=self._metrics,
        )
        self.refresh_auth_token_task = RefreshTask(
            self.AUTH_TOKEN_TASK,
            self._refresh_auth_token,
            interval=self._settings.AUTH_TOKEN_REFRESH_INTERVAL,
            retry_interval=self._settings.AUTH_TOKEN_RETRY_INTERVAL,
            clock=clock,
            metrics=self._metrics,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start both refresh tasks on the running event loop."""
        if self._closed:
            return
        self.refresh_resources_task.start()
        self.refresh_auth_token_task.start()

    async def close(self) -> None:
        """
        Stop both refresh tasks.

        In-flight refreshes get ``REFRESH_SHUTDOWN_TIMEOUT`` seconds to finish.
        The last published snapshot stays readable.
        """
        self._closed = True
        timeout = self._settings.REFRESH_SHUTDOWN_TIMEOUT
        await self.refresh_resources_task.stop(timeout)
        await self.refresh_auth_token_task.stop(timeout)
        log_stage(logger, Stage.RM_CLOSE, "Resource manager closed")

    async def __aenter__(self) -> "ResourceManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_started(self) -> None:
        if self._auto_start and not self._closed:
            await self.start()

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def snapshot(self) -> ResourceSnapshot | None:
        """The currently published snapshot (None until the first publication)."""
        return self._snapshot

    async def get_shuffled_queues(self) -> list[QueueResource]:
        """Queues interleaved across accounts in rank order."""
        snapshot = await self._get_resources_snapshot()
        return self._rank_and_interleave(snapshot.queues_by_account)

    async def get_shuffled_containers(self) -> list[ContainerResource]:
        """Containers interleaved across accounts in rank order."""
        snapshot = await self._get_resources_snapshot()
        return self._rank_and_interleave(snapshot.containers_by_account)

    async def get_identity_token(self) -> str:
        """The cached identity token (authorization context)."""
        await self._ensure_started()
        task = self.refresh_auth_token_task
        snapshot = self._snapshot
        if snapshot is None or snapshot.auth_token is None:
            self._raise_if_closed(task)
            await task.refresh_now(skip_if_refreshed=True)
            snapshot = self._snapshot
            if snapshot is None or snapshot.auth_token is None:
                raise ResourceUnavailableError(
                    "Identity token was never fetched",
                    details={"task": task.name, "last_error": repr(task.last_error)},
                ) from task.last_error

        self._check_staleness(
            task, snapshot.auth_token.fetched_at, self._settings.AUTH_TOKEN_MAX_STALENESS
        )
        return snapshot.auth_token.value

    async def _get_resources_snapshot(self) -> ResourceSnapshot:
        await self._ensure_started()
        task = self.refresh_resources_task
        snapshot = self._snapshot
        if snapshot is None or not snapshot.has_resources:
            self._raise_if_closed(task)
            await task.refresh_now(skip_if_refreshed=True)
            snapshot = self._snapshot
            if snapshot is None or not snapshot.has_resources:
                raise ResourceUnavailableError(
                    "Ingestion resources were never fetched",
                    details={"task": task.name, "last_error": repr(task.last_error)},
                ) from task.last_error

        self._check_staleness(task, snapshot.resources_fetched_at, self._settings.RESOURCES_MAX_STALENESS)
        return snapshot

    def _raise_if_closed(self, task: RefreshTask) -> None:
        if self._closed:
            raise ResourceUnavailableError("Resource manager is closed", details={"task": task.name})

    def _check_staleness(self, task: RefreshTask, fetched_at: float, max_staleness: float) -> None:
        age = self._clock() - fetched_at
        self._metrics.set_snapshot_age(task.name, age)
        if age > max_staleness:
            log_stage(
                logger,
                Stage.RM_STALE,
                "Refusing to serve stale data",
                level="error",
                task=task.name,
                age_seconds=round(age, 1),
                max_staleness_seconds=max_staleness,
            )
            raise StaleResourcesError(
                f"{task.name} data is {age:.0f}s old, exceeding the {max_staleness:.0f}s ceiling",
                details={
                    "task": task.name,
                    "age_seconds": age,
                    "max_staleness_seconds": max_staleness,
                    "last_error": repr(task.last_error),
                },
            ) from task.last_error

    def _rank_and_interleave(self, resources_by_account: Mapping[str, Sequence[ResourceWithSas]]) -> list:
        ranked = self._ranked_accounts.get_ranked_shuffled_accounts(resources_by_account.keys())
        return get_shuffled_resources(ranked, resources_by_account)

    def rank_resources(self, resources: Sequence[ResourceWithSas]) -> list:
        """Order resources not owned by the snapshot (e.g. streaming endpoints) by account rank."""
        return self._rank_and_interleave(group_and_shuffle(resources, self._rng))

    # =========================================================================
    # Reliability Feedback
    # =========================================================================

    def report_ingestion_result(self, resource: ResourceWithSas, success: bool) -> None:
        """Record the outcome of one action against ``resource``'s account."""
        rank = self._ranked_accounts.add_result(resource.account_name, success)
        self._metrics.set_account_rank(resource.account_name, rank)
        logger.debug(
            "Ingestion result reported",
            account=resource.account_name,
            resource=resource.endpoint_without_sas,
            success=success,
            rank=round(rank, 3),
        )

    def get_account_rank(self, account_name: str) -> float | None:
        return self._ranked_accounts.get_rank(account_name)

    @property
    def ranked_accounts(self) -> RankedStorageAccountSet:
        return self._ranked_accounts

    # =========================================================================
    # Refresh Functions
    # =========================================================================

    async def _refresh_ingestion_resources(self) -> None:
        rows = await self._executor.execute_management_command(INGESTION_RESOURCES_COMMAND)
        queues: list[QueueResource] = []
        containers: list[ContainerResource] = []

        for row in rows:
            kind = row.get(RESOURCE_TYPE_COLUMN)
            uri = row.get(STORAGE_ROOT_COLUMN)
            if not kind or not uri:
                raise RefreshError(
                    "Ingestion resources row is missing required columns",
                    details={"columns": sorted(row.keys())},
                )
            account_name = row.get(ACCOUNT_NAME_COLUMN)
            if kind == ResourceKind.QUEUE.value:
                queues.append(QueueResource.from_uri(uri, account_name))
            elif kind == ResourceKind.CONTAINER.value:
                containers.append(ContainerResource.from_uri(uri, account_name))
            else:
                logger.debug("Ignoring ingestion resource kind", kind=kind)

        if not queues or not containers:
            raise RefreshError(
                "Ingestion resources result has no queues or no containers",
                details={"queues": len(queues), "containers": len(containers)},
            )

        queues_by_account = group_and_shuffle(queues, self._rng)
        containers_by_account = group_and_shuffle(containers, self._rng)
        for account_name in set(queues_by_account) | set(containers_by_account):
            self._ranked_accounts.add_account(account_name)

        # Build and swap with no await in between
        base = self._snapshot or ResourceSnapshot()
        self._snapshot = base.with_resources(queues_by_account, containers_by_account, self._clock())
        logger.info(
            "Ingestion resources refreshed",
            stage=Stage.RM_PUBLISH.value,
            queues=len(queues),
            containers=len(containers),
            accounts=len(self._snapshot.account_names),
        )

    async def _refresh_auth_token(self) -> None:
        rows = await self._executor.execute_management_command(IDENTITY_TOKEN_COMMAND)
        if not rows:
            raise RefreshError("Identity token result is empty")
        value = rows[0].get(AUTHORIZATION_CONTEXT_COLUMN)
        if not value:
            raise RefreshError(
                "Identity token result has no authorization context",
                details={"columns": sorted(rows[0].keys())},
            )

        base = self._snapshot or ResourceSnapshot()
        self._snapshot = base.with_auth_token(AuthToken(value=value, fetched_at=self._clock()))

    # =========================================================================
    # Health
    # =========================================================================

    def health_status(self) -> dict[str, Any]:
        """Status of both refresh tasks and the age of the published data."""
        now = self._clock()
        snapshot = self._snapshot
        resources_age = (
            now - snapshot.resources_fetched_at if snapshot and snapshot.has_resources else None
        )
        token_age = now - snapshot.auth_token.fetched_at if snapshot and snapshot.auth_token else None
        healthy = (
            resources_age is not None
            and token_age is not None
            and resources_age <= self._settings.RESOURCES_MAX_STALENESS
            and token_age <= self._settings.AUTH_TOKEN_MAX_STALENESS
        )
        return {
            "status": "healthy" if healthy else "unhealthy",
            "closed": self._closed,
            "resources": {**self.refresh_resources_task.status(), "age_seconds": resources_age},
            "auth_token": {**self.refresh_auth_token_task.status(), "age_seconds": token_age},
            "accounts": {
                account.account_name: round(account.rank, 3)
                for account in self._ranked_accounts.get_ranked_shuffled_accounts()
            },
        }
