"""
Periodic Refresh Task

An explicit ticker with a cancellation signal, owned by the resource manager.

State machine per run:

    IDLE -> FETCHING -> (PUBLISHED | FAILED_KEEP_STALE) -> IDLE

A failed run never raises out of the loop: the error is logged, kept in
``last_error``, and the next run is scheduled after the (shorter) retry
interval. Until the first successful run the task reports
``refreshed_at_least_once == False``.

Stopping is cooperative: ``stop()`` sets the stop event, a run that is in
flight completes (or fails) on its own, and only if it overruns the grace
period is the task cancelled.
"""

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ingestion_broker.core.config.constants import RefreshState, Stage
from ingestion_broker.core.logging.logger import get_logger, log_stage
from ingestion_broker.core.monitoring.metrics_collector import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)


class RefreshTask:
    """
    Background job that periodically runs ``refresh_fn``.

    Args:
        name: Task name used in logs and metrics ("resources", "auth_token")
        refresh_fn: Coroutine function that fetches and publishes fresh data
        interval: Seconds between runs after a success
        retry_interval: Seconds before the next run after a failure
        clock: Time source for ``last_success_at`` / ``last_failure_at``
    """

    def __init__(
        self,
        name: str,
        refresh_fn: Callable[[], Awaitable[None]],
        interval: float,
        retry_interval: float,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsCollector | None = None,
    ):
        self.name = name
        self._refresh_fn = refresh_fn
        self.interval = interval
        self.retry_interval = retry_interval
        self._clock = clock
        self._metrics = metrics or get_metrics_collector()

        self.state = RefreshState.IDLE
        self.last_outcome: RefreshState | None = None
        self.last_success_at: float | None = None
        self.last_failure_at: float | None = None
        self.last_error: BaseException | None = None
        self.run_count = 0

        self._refreshed_once = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._run_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def refreshed_at_least_once(self) -> bool:
        return self._refreshed_once.is_set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait_until_refreshed_at_least_once(self, timeout: float | None = None) -> bool:
        """Wait for the first successful run. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._refreshed_once.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "refreshed_at_least_once": self.refreshed_at_least_once,
            "last_success_at": self.last_success_at,
            "last_failure_at": self.last_failure_at,
            "last_error": repr(self.last_error) if self.last_error else None,
            "run_count": self.run_count,
            "running": self.is_running,
        }

    # =========================================================================
    # Execution
    # =========================================================================

    async def refresh_now(self, skip_if_refreshed: bool = False) -> bool:
        """
        Run one refresh. Concurrent callers share a single run at a time.

        Args:
            skip_if_refreshed: Return immediately if a run already succeeded
                (used by accessors racing the first background run)

        Returns:
            True if the run published fresh data, False if it failed
        """
        async with self._run_lock:
            if skip_if_refreshed and self.refreshed_at_least_once:
                return True
            self.state = RefreshState.FETCHING
            self.run_count += 1
            log_stage(logger, Stage.RM_REFRESH, "Refresh started", level="debug", task=self.name)
            try:
                await self._refresh_fn()
            except Exception as e:
                self.last_error = e
                self.last_failure_at = self._clock()
                self.last_outcome = RefreshState.FAILED_KEEP_STALE
                self._metrics.record_refresh(self.name, success=False)
                log_stage(
                    logger,
                    Stage.RM_REFRESH_FAILED,
                    "Refresh failed, keeping previous data",
                    level="warning",
                    task=self.name,
                    error=repr(e),
                    refreshed_at_least_once=self.refreshed_at_least_once,
                    retry_in_seconds=self.retry_interval,
                )
                return False
            else:
                self.last_success_at = self._clock()
                self.last_outcome = RefreshState.PUBLISHED
                self._refreshed_once.set()
                self._metrics.record_refresh(self.name, success=True)
                log_stage(logger, Stage.RM_PUBLISH, "Refresh published", task=self.name)
                return True
            finally:
                self.state = RefreshState.IDLE

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            success = await self.refresh_now()
            delay = self.interval if success else self.retry_interval
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue
        self.state = RefreshState.STOPPED

    def start(self) -> None:
        """Start the ticker on the running event loop (no-op if already running)."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"refresh-{self.name}")

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the ticker.

        An in-flight run gets ``timeout`` seconds to finish before it is cancelled.
        """
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            self.state = RefreshState.STOPPED
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Refresh task did not stop in time, cancelling", task=self.name, timeout=timeout)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.state = RefreshState.STOPPED
