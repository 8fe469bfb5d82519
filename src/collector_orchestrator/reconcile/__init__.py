"""Reconciliation: set-difference planning, grouped pairing, and the loop driver."""

from collector_orchestrator.reconcile.grouping import GroupingReconciler, assign_members
from collector_orchestrator.reconcile.loop import Orchestrator
from collector_orchestrator.reconcile.reconciler import Reconciler, plan

__all__ = [
    "GroupingReconciler",
    "Orchestrator",
    "Reconciler",
    "assign_members",
    "plan",
]
