import os
from typing import Any

_TRUE, _FALSE = {"True", "true", "yes", "1"}, {"False", "false", "no", "0"}


def _getenv(name: str, *default: Any) -> Any:
    try:
        v = os.environ[name]
        if v in _TRUE:
            return True
        elif v in _FALSE:
            return False
        else:
            return v
    except KeyError:
        pass
    if default:
        return default[0]
    raise KeyError(name)


# ------------------------------------------------
# ---- Defaults and environment variables ----
# ------------------------------------------------

#: Delay used when a pass asks to be requeued "immediately"
REQUEUE_IMMEDIATE_SECONDS = float(_getenv("REQUEUE_IMMEDIATE_SECONDS", 1))

#: Delay used while the cluster agent has no available replica
REQUEUE_SHORT_SECONDS = float(_getenv("REQUEUE_SHORT_SECONDS", 5))

#: Delay after the node agent workload changed, and steady state heartbeat
REQUEUE_MEDIUM_SECONDS = float(_getenv("REQUEUE_MEDIUM_SECONDS", 15))

#: Retry delay for transient Kubernetes API errors
API_RETRY_DELAY_SECONDS = float(_getenv("API_RETRY_DELAY_SECONDS", 30))

#: Interval of the timer draining queued reconciliation requests
RECONCILE_QUEUE_INTERVAL_SECONDS = float(
    _getenv("RECONCILE_QUEUE_INTERVAL_SECONDS", 1.5)
)

#: Allow `agent.useExtendedDaemonset` (requires the ExtendedDaemonSet CRD)
SUPPORT_EXTENDED_DAEMONSET = bool(_getenv("SUPPORT_EXTENDED_DAEMONSET", False))

#: Maximum number of concurrent kopf workers
WORKER_LIMIT = int(_getenv("WORKER_LIMIT", 4))

#: Expose Prometheus metrics
METRICS_ENABLED = bool(_getenv("METRICS_ENABLED", True))

#: Port of the Prometheus metrics endpoint
METRICS_PORT = int(_getenv("METRICS_PORT", 8000))


class Settings:
    """Operator settings"""

    requeue_immediate_seconds: float = REQUEUE_IMMEDIATE_SECONDS
    requeue_short_seconds: float = REQUEUE_SHORT_SECONDS
    requeue_medium_seconds: float = REQUEUE_MEDIUM_SECONDS
    api_retry_delay_seconds: float = API_RETRY_DELAY_SECONDS
    reconcile_queue_interval_seconds: float = RECONCILE_QUEUE_INTERVAL_SECONDS
    support_extended_daemonset: bool = SUPPORT_EXTENDED_DAEMONSET
    worker_limit: int = WORKER_LIMIT
    metrics_enabled: bool = METRICS_ENABLED
    metrics_port: int = METRICS_PORT

    def __init__(
        self,
        *args,
        requeue_immediate_seconds: float = None,
        requeue_short_seconds: float = None,
        requeue_medium_seconds: float = None,
        api_retry_delay_seconds: float = None,
        reconcile_queue_interval_seconds: float = None,
        support_extended_daemonset: bool = None,
        worker_limit: int = None,
        metrics_enabled: bool = None,
        metrics_port: int = None,
        **kwargs,
    ):
        if requeue_immediate_seconds is not None:
            self.requeue_immediate_seconds = requeue_immediate_seconds

        if requeue_short_seconds is not None:
            self.requeue_short_seconds = requeue_short_seconds

        if requeue_medium_seconds is not None:
            self.requeue_medium_seconds = requeue_medium_seconds

        if api_retry_delay_seconds is not None:
            self.api_retry_delay_seconds = api_retry_delay_seconds

        if reconcile_queue_interval_seconds is not None:
            self.reconcile_queue_interval_seconds = reconcile_queue_interval_seconds

        if support_extended_daemonset is not None:
            self.support_extended_daemonset = support_extended_daemonset

        if worker_limit is not None:
            self.worker_limit = worker_limit

        if metrics_enabled is not None:
            self.metrics_enabled = metrics_enabled

        if metrics_port is not None:
            self.metrics_port = metrics_port
