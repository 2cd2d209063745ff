from .registry import Identity, BUILDERS, build
from .stages import Stage, STAGES, validate_graph
from .gate import ready
from .status import StatusAccumulator
from .requeue import Outcome, ReconcileResult, compute_requeue
from .reconciler import Reconciler

__all__ = [
    "Identity",
    "BUILDERS",
    "build",
    "Stage",
    "STAGES",
    "validate_graph",
    "ready",
    "StatusAccumulator",
    "Outcome",
    "ReconcileResult",
    "compute_requeue",
    "Reconciler",
]
