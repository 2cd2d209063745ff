from typing import Any, Dict, Optional
from benedict import benedict
from datadog_operator.controller.registry import AGENT, CLUSTER_AGENT, CLUSTER_CHECKS_RUNNER
from datadog_operator.utils.errors import RenameConflictError
from datadog_operator.utils.helpers import now

#: status key and live name field per component
STATUS_FIELDS = {
    AGENT: ("agent", "daemonsetName"),
    CLUSTER_AGENT: ("clusterAgent", "deploymentName"),
    CLUSTER_CHECKS_RUNNER: ("clusterChecksRunner", "deploymentName"),
}

STATE_RUNNING = "Running"
STATE_UPDATING = "Updating"
STATE_PROGRESSING = "Progressing"


def daemonset_counts(observed: Optional[Dict[str, Any]]) -> Dict[str, int]:
    """Replica counts of a DaemonSet, or of an ExtendedDaemonSet."""
    status = (observed or {}).get("status") or {}
    if "desired" in status:
        return {
            "desired": status.get("desired", 0),
            "current": status.get("current", 0),
            "ready": status.get("ready", 0),
            "available": status.get("available", 0),
            "upToDate": status.get("upToDate", 0),
        }
    return {
        "desired": status.get("desiredNumberScheduled", 0),
        "current": status.get("currentNumberScheduled", 0),
        "ready": status.get("numberReady", 0),
        "available": status.get("numberAvailable", 0),
        "upToDate": status.get("updatedNumberScheduled", 0),
    }


def deployment_counts(observed: Optional[Dict[str, Any]]) -> Dict[str, int]:
    status = (observed or {}).get("status") or {}
    return {
        "replicas": status.get("replicas", 0),
        "readyReplicas": status.get("readyReplicas", 0),
        "availableReplicas": status.get("availableReplicas", 0),
        "updatedReplicas": status.get("updatedReplicas", 0),
    }


class StatusAccumulator:
    """Collects the status of every component during a pass; committed once
    at the end of the pass.

    Also guards live workload names: once a name is recorded it cannot change
    through the DatadogAgent spec.
    """

    def __init__(self, status: Optional[Dict[str, Any]]):
        # status keys written by kopf may contain dots
        self._status = benedict(dict(status or {}), keypath_separator=None)
        self._updates = benedict(keypath_separator=None)

    def live_name(self, component: str) -> Optional[str]:
        key, field = STATUS_FIELDS[component]
        return self._status.get([key, field])

    def live_kind(self, component: str) -> Optional[str]:
        """Kind of the workload recorded for `component`, if any."""
        key, _ = STATUS_FIELDS[component]
        return self._status.get([key, "workloadKind"])

    def guard_rename(self, component: str, desired_name: str):
        live = self.live_name(component)
        if live and live != desired_name:
            key, field = STATUS_FIELDS[component]
            raise RenameConflictError(
                f"`{key}.{field}` is `{live}` but the DatadogAgent now asks for "
                f"`{desired_name}`. Renaming a live workload is not supported."
            )

    def record(
        self,
        component: str,
        name: str,
        hash: Optional[str],
        observed: Optional[Dict[str, Any]],
        changed: bool,
        kind: Optional[str] = None,
    ):
        key, field = STATUS_FIELDS[component]
        if component == AGENT:
            counts = daemonset_counts(observed)
            desired, available = counts["desired"], counts["available"]
        else:
            counts = deployment_counts(observed)
            desired, available = counts["replicas"], counts["availableReplicas"]

        if changed:
            state = STATE_UPDATING
        elif desired and available >= desired:
            state = STATE_RUNNING
        else:
            state = STATE_PROGRESSING

        values = {field: name, "currentHash": hash, "state": state, **counts}
        if kind and component == AGENT:
            values["workloadKind"] = kind
        self._updates[key] = values

    @property
    def updates(self) -> Dict[str, Any]:
        return self._updates.dict()

    def has_changes(self) -> bool:
        """True when the recorded values differ from the current status."""
        for key, values in self.updates.items():
            current = dict(self._status.get(key) or {})
            current.pop("lastUpdate", None)
            if current != {**current, **values}:
                return True
        return False

    def prepare_commit(self) -> Optional[Dict[str, Any]]:
        """Status patch for this pass, None when nothing changed."""
        if not self.has_changes():
            return None
        timestamp = now()
        return {
            key: {**values, "lastUpdate": timestamp}
            for key, values in self.updates.items()
        }
