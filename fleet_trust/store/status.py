"""Convergence state of a distribution target."""

from enum import StrEnum

__all__ = ["TargetState"]


class TargetState(StrEnum):
    """Where a target is in converging on the canonical bundle."""

    UNKNOWN = "Unknown"
    PENDING = "Pending"
    APPLIED = "Applied"
    COMPLIANT = "Compliant"
    FAILING = "Failing"
