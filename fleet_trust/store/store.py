"""Persistent per-target state carried between reconciliation passes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fleet_trust.manifest import BaseManifest

from .status import TargetState

__all__ = [
    "DistributionTarget",
    "FleetState",
    "StateStore",
]


@dataclass
class DistributionTarget(BaseManifest):
    """What is known about one cluster that should hold the bundle."""

    cluster_id: str
    """The managed cluster name, or `hub`."""

    state: TargetState = TargetState.UNKNOWN
    """The convergence state of the target."""

    last_applied_fingerprint: str | None = None
    """Fingerprint of the bundle last successfully handed to the target."""

    observed_fingerprint: str | None = None
    """Fingerprint the target last reported as installed."""

    last_attempt: datetime | None = None
    """When an apply or compliance check was last attempted."""

    consecutive_failures: int = 0
    """Failed attempts since the last success."""

    exhausted: bool = False
    """Set once the retry budget is spent, no further attempts are made."""

    last_error: str | None = None
    """The most recent failure, cleared on success."""

    def __str__(self) -> str:
        if self.last_error:
            return f"{self.cluster_id} {self.state}: {self.last_error}"
        return f"{self.cluster_id} {self.state}"


@dataclass
class FleetState(BaseManifest):
    """Everything persisted between passes."""

    fingerprint: str | None = None
    """Last known good canonical bundle fingerprint."""

    targets: list[DistributionTarget] = field(default_factory=list)
    """Target records, the hub first and then managed clusters in inventory order."""

    def target(self, cluster_id: str) -> DistributionTarget | None:
        """Return the record for a target, if tracked."""
        for target in self.targets:
            if target.cluster_id == cluster_id:
                return target
        return None

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "FleetState":
        """Parse a FleetState from a dictionary."""
        return cls.from_dict(doc)


class StateStore(ABC):
    """Loads and saves the fleet state."""

    @abstractmethod
    async def load(self) -> FleetState:
        """Return the persisted state, or an empty state if there is none."""

    @abstractmethod
    async def save(self, state: FleetState) -> None:
        """Persist the state."""
