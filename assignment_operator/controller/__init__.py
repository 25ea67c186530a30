"""Controllers that reconcile workload assignments into a GitOps repository."""

from .assignment import AssignmentDefinition, AssignmentTarget
from .finalizer import FinalizerManager
from .operator import Operator
from .queue import ReconcileQueue
from .reconciler import (
    Action,
    ReconcileResult,
    ReconcileTarget,
    Reconciler,
    determine_action,
)

__all__ = [
    "Action",
    "AssignmentDefinition",
    "AssignmentTarget",
    "FinalizerManager",
    "Operator",
    "ReconcileQueue",
    "ReconcileResult",
    "ReconcileTarget",
    "Reconciler",
    "determine_action",
]
