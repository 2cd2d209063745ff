"""Sensor delegation for fan-out pattern.

SensorDelegate routes sensor events to multiple monitoring backends
simultaneously. Each backend receives the same events and keeps its own
state for start/complete hook pairs.
"""

from typing import Set, Dict, List, Optional, Any
import logging

from datadog_operator.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class SensorDelegate(OperatorSensor):
    """Delegate sensor that fans out events to multiple backends.

    A failing backend is logged and skipped, it never breaks a reconcile pass.

    Example:
        delegate = SensorDelegate()
        delegate.add(PrometheusMonitor())
        state = delegate.on_reconcile_start("datadog", "default", 5, "timer")
        delegate.on_reconcile_complete("datadog", "default", state, True)
    """

    def __init__(self) -> None:
        self._sensors: Set[OperatorSensor] = set()

    def add(self, sensor: OperatorSensor) -> None:
        logger.info(f"Adding sensor: {sensor.__class__.__name__}")
        self._sensors.add(sensor)

    def remove(self, sensor: OperatorSensor) -> None:
        logger.info(f"Removing sensor: {sensor.__class__.__name__}")
        self._sensors.discard(sensor)

    def clear(self) -> None:
        """Remove all sensors from the delegate."""
        logger.info(f"Clearing {len(self._sensors)} sensors")
        self._sensors.clear()

    def _start(self, hook: str, *args) -> Optional[Dict[OperatorSensor, Any]]:
        if not self._sensors:
            return None
        states = {}
        for sensor in self._sensors:
            try:
                state = getattr(sensor, hook)(*args)
                if state is not None:
                    states[sensor] = state
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )
        return states if states else None

    def _fire(self, hook: str, *args, **kwargs) -> None:
        for sensor in self._sensors:
            try:
                getattr(sensor, hook)(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        owner_name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[OperatorSensor, Any]]:
        return self._start(
            "on_reconcile_start", owner_name, namespace, generation, trigger_source
        )

    def on_reconcile_complete(
        self,
        owner_name: str,
        namespace: str,
        state: Optional[Dict[OperatorSensor, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        for sensor in self._sensors:
            try:
                sensor_state = state.get(sensor) if state else None
                sensor.on_reconcile_complete(
                    owner_name, namespace, sensor_state, success, error
                )
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.on_reconcile_complete: {e}",
                    exc_info=True,
                )

    def on_reconcile_queued(
        self, owner_name: str, namespace: str, queue_depth: int
    ) -> None:
        self._fire("on_reconcile_queued", owner_name, namespace, queue_depth)

    def on_reconcile_dequeued(
        self, owner_name: str, namespace: str, wait_time: float
    ) -> None:
        self._fire("on_reconcile_dequeued", owner_name, namespace, wait_time)

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
    ) -> Optional[Dict[OperatorSensor, Any]]:
        return self._start(
            "on_resource_sync_start",
            owner_name,
            component_name,
            resource_name,
            namespace,
            resource_type,
        )

    def on_resource_sync_complete(
        self,
        owner_name: str,
        component_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[OperatorSensor, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        for sensor in self._sensors:
            try:
                sensor_state = state.get(sensor) if state else None
                sensor.on_resource_sync_complete(
                    owner_name,
                    component_name,
                    resource_name,
                    namespace,
                    resource_type,
                    sensor_state,
                    operation,
                    success,
                    error,
                )
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.on_resource_sync_complete: {e}",
                    exc_info=True,
                )

    def on_resource_drift_detected(
        self,
        owner_name: str,
        component_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        self._fire(
            "on_resource_drift_detected",
            owner_name,
            component_name,
            resource_name,
            namespace,
            resource_type,
            drift_fields,
        )

    # =============================================================================
    # Orchestration Hooks
    # =============================================================================

    def on_gate_blocked(
        self, owner_name: str, namespace: str, gate: str, blocked_stages: List[str]
    ) -> None:
        self._fire("on_gate_blocked", owner_name, namespace, gate, blocked_stages)

    def on_status_update(
        self, owner_name: str, namespace: str, status_updates: Dict[str, Any]
    ) -> None:
        self._fire("on_status_update", owner_name, namespace, status_updates)
