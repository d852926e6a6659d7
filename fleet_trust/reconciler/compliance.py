"""Read-only aggregate view of the targets after the last completed pass."""

import copy
from dataclasses import dataclass
import logging

from fleet_trust.manifest import BaseManifest
from fleet_trust.store import FleetState, TargetState

__all__ = [
    "ComplianceEntry",
    "ComplianceTracker",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ComplianceEntry(BaseManifest):
    """The compliance of one target."""

    cluster_id: str
    state: TargetState
    fingerprint_match: bool
    last_applied_fingerprint: str | None = None
    consecutive_failures: int = 0
    exhausted: bool = False
    last_error: str | None = None


class ComplianceTracker:
    """Reports on the snapshot published at the end of each pass.

    A snapshot is a private copy replaced as a whole, so readers never see a
    pass that is still in progress.
    """

    def __init__(self, state: FleetState | None = None) -> None:
        """Initialize ComplianceTracker."""
        self._snapshot = copy.deepcopy(state) if state else FleetState()

    def publish(self, state: FleetState) -> None:
        """Replace the snapshot with a copy of a completed pass."""
        self._snapshot = copy.deepcopy(state)
        _LOGGER.debug("Published state for %d target(s)", len(state.targets))

    @property
    def fingerprint(self) -> str | None:
        """The canonical fingerprint of the snapshot."""
        return self._snapshot.fingerprint

    def report(self) -> list[ComplianceEntry]:
        """Return one entry per target, sorted by cluster id."""
        snapshot = self._snapshot
        return [
            ComplianceEntry(
                cluster_id=target.cluster_id,
                state=target.state,
                fingerprint_match=(
                    snapshot.fingerprint is not None
                    and target.state == TargetState.COMPLIANT
                    and target.last_applied_fingerprint == snapshot.fingerprint
                ),
                last_applied_fingerprint=target.last_applied_fingerprint,
                consecutive_failures=target.consecutive_failures,
                exhausted=target.exhausted,
                last_error=target.last_error,
            )
            for target in sorted(snapshot.targets, key=lambda t: t.cluster_id)
        ]

    def all_compliant(self) -> bool:
        """Return True if every target holds the canonical bundle.

        This is the gate for downstream automation that depends on trust
        being established across the whole fleet.
        """
        entries = self.report()
        return bool(entries) and all(entry.fingerprint_match for entry in entries)

    def failing(self) -> list[ComplianceEntry]:
        """Return the targets whose last attempt failed."""
        return [entry for entry in self.report() if entry.state == TargetState.FAILING]

    def exhausted(self) -> list[ComplianceEntry]:
        """Return the targets that need operator attention."""
        return [entry for entry in self.report() if entry.exhausted]
