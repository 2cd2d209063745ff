"""Base sensor classes for operator monitoring.

This module defines the base OperatorSensor class that provides lifecycle hooks
for monitoring various operator events. All hooks are no-ops by default, allowing
subclasses to override only the events they care about.

The hook pattern:
- Hooks come in pairs: on_X_start() and on_X_complete()
- Start hooks return an optional state dict for tracking multi-phase operations
- Complete hooks receive the state dict from their corresponding start hook
- All hooks are optional - sensors only implement what they need
"""

from typing import Dict, List, Optional, Any
import logging

logger = logging.getLogger(__name__)


class OperatorSensor:
    """Base sensor class for Datadog operator monitoring.

    Hooks cover three categories:
    1. Reconciliation lifecycle (one pass over a DatadogAgent)
    2. Resource operations (create/patch of dependent objects)
    3. Orchestration (readiness gate, status commits)

    All methods are no-ops by default.
    """

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
        """Called when a reconcile pass begins.

        Args:
            owner_name: DatadogAgent resource name
            namespace: Kubernetes namespace
            generation: Resource generation number
            trigger_source: What triggered the pass (create, update, queue, timer...)

        Returns:
            Optional state dict passed to on_reconcile_complete
        """
        pass

    def on_reconcile_complete(
        self,
        owner_name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Called when a reconcile pass completes.

        Args:
            owner_name: DatadogAgent resource name
            namespace: Kubernetes namespace
            state: State dict returned from on_reconcile_start
            success: Whether the pass succeeded
            error: Exception if the pass failed
        """
        pass

    def on_reconcile_queued(
        self,
        owner_name: str,
        namespace: str,
        queue_depth: int,
    ) -> None:
        """Called when a reconciliation request is queued."""
        pass

    def on_reconcile_dequeued(
        self,
        owner_name: str,
        namespace: str,
        wait_time: float,
    ) -> None:
        """Called when a reconciliation request is dequeued."""
        pass

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
        """Called before a dependent object is created or patched.

        Args:
            owner_name: DatadogAgent resource name
            component_name: agent, cluster-agent or cluster-checks-runner
            resource_name: Name of the dependent object
            namespace: Kubernetes namespace
            resource_type: Kind of the dependent object
        """
        pass

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
        """Called after a dependent object was created or patched.

        Args:
            operation: `create` or `patch`
        """
        pass

    def on_resource_drift_detected(
        self,
        owner_name: str,
        component_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        drift_fields: List[str],
    ) -> None:
        """Called when an observed object no longer matches its desired fingerprint."""
        pass

    # =============================================================================
    # Orchestration Hooks
    # =============================================================================

    def on_gate_blocked(
        self,
        owner_name: str,
        namespace: str,
        gate: str,
        blocked_stages: List[str],
    ) -> None:
        """Called when stages are skipped because a readiness gate is closed."""
        pass

    def on_status_update(
        self,
        owner_name: str,
        namespace: str,
        status_updates: Dict[str, Any],
    ) -> None:
        """Called when the status of a DatadogAgent is committed."""
        pass
