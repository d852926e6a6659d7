"""Persistence of distribution targets and the last known good fingerprint."""

from .file import FileStateStore
from .in_memory import InMemoryStateStore
from .status import TargetState
from .store import DistributionTarget, FleetState, StateStore

__all__ = [
    "TargetState",
    "DistributionTarget",
    "FleetState",
    "StateStore",
    "InMemoryStateStore",
    "FileStateStore",
]
