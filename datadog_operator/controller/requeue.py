from enum import Enum
from typing import NamedTuple, Optional
from datadog_operator.types.settings import Settings
from datadog_operator.utils.errors import GateNotReadyError


class Outcome(Enum):
    NOT_FOUND = "NotFound"
    DELETED = "Deleted"
    FINALIZER_ADDED = "FinalizerAdded"
    STAGE_CHANGED = "StageChanged"
    GATE_BLOCKED = "GateBlocked"
    FINAL_CHANGED = "FinalChanged"
    CONVERGED = "Converged"
    FAILED = "Failed"


class ReconcileResult(NamedTuple):
    """Exit directive of a reconcile pass."""

    requeue: bool = False
    #: seconds; None with ``requeue`` means as soon as possible
    requeue_after: Optional[float] = None
    error: Optional[Exception] = None
    outcome: Optional[Outcome] = None

    @property
    def should_requeue(self) -> bool:
        return self.requeue or bool(self.requeue_after)

    def delay(self, conf: Settings) -> Optional[float]:
        """Seconds until the next pass, None when no pass is requested."""
        if not self.should_requeue:
            return None
        return self.requeue_after or conf.requeue_immediate_seconds


def compute_requeue(
    outcome: Outcome, conf: Settings, error: Exception = None
) -> ReconcileResult:
    if outcome in (Outcome.NOT_FOUND, Outcome.DELETED):
        return ReconcileResult(outcome=outcome)
    if outcome in (Outcome.FINALIZER_ADDED, Outcome.STAGE_CHANGED):
        return ReconcileResult(requeue=True, outcome=outcome)
    if outcome is Outcome.GATE_BLOCKED:
        return ReconcileResult(
            requeue_after=conf.requeue_short_seconds,
            error=error or GateNotReadyError("Cluster agent has no available replica."),
            outcome=outcome,
        )
    # a changed node agent workload is revisited at the heartbeat delay
    if outcome in (Outcome.FINAL_CHANGED, Outcome.CONVERGED):
        return ReconcileResult(
            requeue_after=conf.requeue_medium_seconds, outcome=outcome
        )
    # fatal errors are never retried by the engine
    return ReconcileResult(error=error, outcome=Outcome.FAILED)
