"""Prometheus monitoring backend for the Datadog operator.

PrometheusMonitor collects operator lifecycle events and exposes them as
Prometheus metrics:

1. Reconciliation Loop Health - Duration, queue depth, throughput, errors
2. Kubernetes Resource Sync - Operation counts, latency, drift detection
3. Orchestration - Readiness gate blocks, status commits

All metrics carry the DatadogAgent name and namespace as labels.
"""

from typing import Dict, List, Optional, Any
import time
import logging

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, Gauge

from datadog_operator.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class PrometheusMonitor(OperatorSensor):
    """Prometheus metrics monitor for the Datadog operator.

    Metric families:
    - datadog_operator_reconcile_* - Reconciliation loop metrics
    - datadog_operator_resource_* - Kubernetes resource sync metrics
    - datadog_operator_gate_* / datadog_operator_status_* - Orchestration metrics
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        super().__init__()

        # =============================================================================
        # Reconciliation Loop Metrics
        # =============================================================================

        self.reconcile_duration = Histogram(
            "datadog_operator_reconcile_duration_seconds",
            "Time spent in a reconcile pass",
            labelnames=["owner_name", "namespace", "trigger_source", "result"],
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=registry,
        )

        self.reconcile_total = Counter(
            "datadog_operator_reconcile_total",
            "Total number of reconcile passes",
            labelnames=["owner_name", "namespace", "trigger_source", "result"],
            registry=registry,
        )

        self.reconcile_errors = Counter(
            "datadog_operator_reconcile_errors_total",
            "Total number of failed reconcile passes",
            labelnames=["owner_name", "namespace", "error_type"],
            registry=registry,
        )

        self.reconcile_queue_depth = Gauge(
            "datadog_operator_reconcile_queue_depth",
            "Current reconciliation queue depth per DatadogAgent",
            labelnames=["owner_name", "namespace"],
            registry=registry,
        )

        self.reconcile_queue_wait_seconds = Histogram(
            "datadog_operator_reconcile_queue_wait_seconds",
            "Time spent waiting in the reconciliation queue",
            labelnames=["owner_name", "namespace"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
            registry=registry,
        )

        # =============================================================================
        # Kubernetes Resource Sync Metrics
        # =============================================================================

        self.resource_sync_duration = Histogram(
            "datadog_operator_resource_sync_duration_seconds",
            "Time spent creating or patching dependent objects",
            labelnames=[
                "owner_name",
                "component_name",
                "namespace",
                "resource_type",
                "operation",
                "result",
            ],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )

        self.resource_sync_total = Counter(
            "datadog_operator_resource_sync_total",
            "Total number of dependent object create/patch operations",
            labelnames=[
                "owner_name",
                "component_name",
                "namespace",
                "resource_type",
                "operation",
                "result",
            ],
            registry=registry,
        )

        self.resource_sync_errors = Counter(
            "datadog_operator_resource_sync_errors_total",
            "Total number of failed dependent object operations",
            labelnames=[
                "owner_name",
                "component_name",
                "namespace",
                "resource_type",
                "error_type",
            ],
            registry=registry,
        )

        self.resource_drift_detected = Counter(
            "datadog_operator_resource_drift_detected_total",
            "Total number of fingerprint mismatches on dependent objects",
            labelnames=[
                "owner_name",
                "component_name",
                "resource_name",
                "namespace",
                "resource_type",
            ],
            registry=registry,
        )

        # =============================================================================
        # Orchestration Metrics
        # =============================================================================

        self.gate_blocked = Counter(
            "datadog_operator_gate_blocked_total",
            "Total number of passes that skipped stages behind a closed readiness gate",
            labelnames=["owner_name", "namespace", "gate"],
            registry=registry,
        )

        self.status_updates = Counter(
            "datadog_operator_status_updates_total",
            "Total number of status updates",
            labelnames=["owner_name", "namespace", "update_field"],
            registry=registry,
        )

        logger.info("PrometheusMonitor initialized with all metrics")

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        owner_name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[str, Any]]:
        """Record reconcile start time."""
        return {
            "start_time": time.time(),
            "trigger_source": trigger_source,
        }

    def on_reconcile_complete(
        self,
        owner_name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record reconcile duration and result."""
        if state:
            duration = time.time() - state["start_time"]
            trigger_source = state["trigger_source"]
            result = "success" if success else "failure"

            self.reconcile_duration.labels(
                owner_name=owner_name,
                namespace=namespace,
                trigger_source=trigger_source,
                result=result,
            ).observe(duration)

            self.reconcile_total.labels(
                owner_name=owner_name,
                namespace=namespace,
                trigger_source=trigger_source,
                result=result,
            ).inc()

        if error:
            self.reconcile_errors.labels(
                owner_name=owner_name,
                namespace=namespace,
                error_type=error.__class__.__name__,
            ).inc()

    def on_reconcile_queued(
        self, owner_name: str, namespace: str, queue_depth: int
    ) -> None:
        """Record reconciliation queue depth."""
        self.reconcile_queue_depth.labels(
            owner_name=owner_name,
            namespace=namespace,
        ).set(queue_depth)

    def on_reconcile_dequeued(
        self, owner_name: str, namespace: str, wait_time: float
    ) -> None:
        """Record time spent waiting in queue."""
        self.reconcile_queue_wait_seconds.labels(
            owner_name=owner_name,
            namespace=namespace,
        ).observe(wait_time)

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_start(
        self,
        owner_name: str,
        component_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
    ) -> Optional[Dict[str, Any]]:
        """Record resource sync start time."""
        return {"start_time": time.time()}

    def on_resource_sync_complete(
        self,
        owner_name: str,
        component_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[str, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record resource sync duration and result."""
        result = "success" if success else "failure"
        labels = dict(
            owner_name=owner_name,
            component_name=component_name,
            namespace=namespace,
            resource_type=resource_type,
            operation=operation,
            result=result,
        )
        if state:
            self.resource_sync_duration.labels(**labels).observe(
                time.time() - state["start_time"]
            )
        self.resource_sync_total.labels(**labels).inc()

        if error:
            self.resource_sync_errors.labels(
                owner_name=owner_name,
                component_name=component_name,
                namespace=namespace,
                resource_type=resource_type,
                error_type=error.__class__.__name__,
            ).inc()

    def on_resource_drift_detected(
        self,
        owner_name: str,
        component_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        """Record fingerprint drift."""
        self.resource_drift_detected.labels(
            owner_name=owner_name,
            component_name=component_name,
            resource_name=resource_name,
            namespace=namespace,
            resource_type=resource_type,
        ).inc()

    # =============================================================================
    # Orchestration Hooks
    # =============================================================================

    def on_gate_blocked(
        self, owner_name: str, namespace: str, gate: str, blocked_stages: List[str]
    ) -> None:
        self.gate_blocked.labels(
            owner_name=owner_name, namespace=namespace, gate=gate
        ).inc()

    def on_status_update(
        self, owner_name: str, namespace: str, status_updates: Dict[str, Any]
    ) -> None:
        for field in status_updates:
            self.status_updates.labels(
                owner_name=owner_name, namespace=namespace, update_field=field
            ).inc()
