#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

This module provides metrics for the ingestion broker:
- Refresh outcomes per refresh task
- Published snapshot age
- Resource-scoped attempts by action and outcome
- Account reliability rank
- Routing decisions and fallbacks of the managed streaming router

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- The host application exposes ``get_prometheus_metrics()`` however it likes

Author: Senior Solution Architect
Date: 2025-12-05
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from ingestion_broker.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

REFRESH_TOTAL = Counter(
    'ingestion_broker_refresh_total',
    'Refresh task runs by outcome',
    ['task', 'outcome']  # success, failure
)

SNAPSHOT_AGE = Gauge(
    'ingestion_broker_snapshot_age_seconds',
    'Age of the published data of a refresh task at last read',
    ['task']
)

RESOURCE_ATTEMPTS = Counter(
    'ingestion_broker_resource_attempts_total',
    'Resource-scoped action attempts',
    ['action', 'outcome']  # success, transient, permanent, configuration
)

ACCOUNT_RANK = Gauge(
    'ingestion_broker_account_rank',
    'Reliability rank of a storage account (0..1)',
    ['account']
)

ROUTING_DECISIONS = Counter(
    'ingestion_broker_routing_decisions_total',
    'Admission decisions of the managed streaming router',
    ['path']  # direct, queued
)

FALLBACKS = Counter(
    'ingestion_broker_fallbacks_total',
    'Direct-path requests that fell back to the queued path',
    ['reason']  # retries_exhausted, permanent_failure
)

INGESTION_DURATION = Histogram(
    'ingestion_broker_ingestion_duration_seconds',
    'End-to-end ingestion duration by terminal path',
    ['path'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
)


class MetricsCollector:
    """
    Centralized metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = get_metrics_collector()
        metrics.record_refresh("resources", success=True)
        output = metrics.get_prometheus_metrics()
    """

    # =========================================================================
    # Resource Manager Metrics
    # =========================================================================

    def record_refresh(self, task: str, success: bool) -> None:
        REFRESH_TOTAL.labels(task=task, outcome="success" if success else "failure").inc()

    def set_snapshot_age(self, task: str, age_seconds: float) -> None:
        SNAPSHOT_AGE.labels(task=task).set(age_seconds)

    def set_account_rank(self, account: str, rank: float) -> None:
        ACCOUNT_RANK.labels(account=account).set(rank)

    # =========================================================================
    # Retry Metrics
    # =========================================================================

    def record_attempt(self, action: str, outcome: str) -> None:
        """Record one resource-scoped attempt."""
        RESOURCE_ATTEMPTS.labels(action=action, outcome=outcome).inc()

    # =========================================================================
    # Routing Metrics
    # =========================================================================

    def record_routing_decision(self, path: str) -> None:
        ROUTING_DECISIONS.labels(path=path).inc()

    def record_fallback(self, reason: str) -> None:
        FALLBACKS.labels(reason=reason).inc()

    def record_ingestion_duration(self, path: str, duration_seconds: float) -> None:
        INGESTION_DURATION.labels(path=path).observe(duration_seconds)

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """
        Get Prometheus metrics output.

        Returns:
            bytes: Prometheus text format metrics
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        """Get Prometheus content type."""
        return CONTENT_TYPE_LATEST


# Global metrics collector
_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
        logger.debug("Metrics collector initialized", stage="M.0")
    return _metrics
