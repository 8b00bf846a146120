"""
Service layer for the Nebari operator.

Contains the reconcilers that implement each phase of NebariApp
reconciliation and the orchestrator that sequences them.
"""

from .app_reconciler import NebariAppReconciler, ReconcileResult
from .auth_reconciler import AuthReconciler
from .routing_reconciler import RoutingReconciler

__all__ = [
    "AuthReconciler",
    "NebariAppReconciler",
    "ReconcileResult",
    "RoutingReconciler",
]
