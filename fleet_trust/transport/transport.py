"""Interface to the policy engine that delivers manifests to managed clusters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from fleet_trust.descriptor import DistributionManifest

__all__ = [
    "ComplianceSignal",
    "PolicyTransport",
]


@dataclass(frozen=True)
class ComplianceSignal:
    """What the policy engine last reported for one cluster."""

    compliant: bool
    """Whether the cluster reports the manifest as realized."""

    fingerprint: str | None = None
    """Fingerprint of the manifest the report refers to."""


class PolicyTransport(ABC):
    """Hands manifests to an external engine that applies them remotely.

    Delivery is asynchronous: a successful `distribute` only means the
    engine accepted the manifest. Realization is observed by polling
    `compliance`.
    """

    @abstractmethod
    async def distribute(self, manifest: DistributionManifest, cluster: str) -> None:
        """Ask the engine to realize `manifest` on `cluster`.

        Raises `TransportRejected` or `ApplyTimeout` on failure.
        """

    @abstractmethod
    async def compliance(self, cluster: str) -> ComplianceSignal:
        """Return the engine's latest compliance report for `cluster`."""

    @abstractmethod
    async def withdraw(self, cluster: str) -> None:
        """Stop distributing to a cluster that left the inventory."""
