"""Fleet reconciliation: the per-pass loop and the compliance view it feeds."""

from .compliance import ComplianceEntry, ComplianceTracker
from .loop import FleetReconciler, ReconciliationRun, TargetOutcome
from .targets import DesiredState, Distributor, FleetDistributor, HubDistributor

__all__ = [
    "FleetReconciler",
    "ReconciliationRun",
    "TargetOutcome",
    "ComplianceTracker",
    "ComplianceEntry",
    "DesiredState",
    "Distributor",
    "HubDistributor",
    "FleetDistributor",
]
