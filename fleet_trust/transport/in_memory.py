"""In-memory policy transport, used for dry runs and tests."""

import logging

from fleet_trust.descriptor import DistributionManifest
from fleet_trust.exceptions import TransportRejected

from .transport import ComplianceSignal, PolicyTransport

__all__ = ["InMemoryTransport"]

_LOGGER = logging.getLogger(__name__)


class InMemoryTransport(PolicyTransport):
    """Records distributed manifests and reports them compliant immediately.

    Clusters listed in `rejected` fail every distribution, clusters in
    `non_compliant` accept manifests but never report compliance.
    """

    def __init__(self) -> None:
        """Initialize InMemoryTransport."""
        self.distributed: dict[str, DistributionManifest] = {}
        self.calls: list[str] = []
        self.withdrawn: list[str] = []
        self.rejected: set[str] = set()
        self.non_compliant: set[str] = set()

    async def distribute(self, manifest: DistributionManifest, cluster: str) -> None:
        """Record the manifest for the cluster."""
        self.calls.append(cluster)
        if cluster in self.rejected:
            raise TransportRejected(cluster, "rejected by policy engine")
        _LOGGER.debug("Distributed %s to %s", manifest.fingerprint, cluster)
        self.distributed[cluster] = manifest

    async def compliance(self, cluster: str) -> ComplianceSignal:
        """Report the last distributed manifest as realized."""
        if cluster in self.non_compliant or cluster not in self.distributed:
            return ComplianceSignal(compliant=False)
        return ComplianceSignal(
            compliant=True, fingerprint=self.distributed[cluster].fingerprint
        )

    async def withdraw(self, cluster: str) -> None:
        """Forget the cluster."""
        self.withdrawn.append(cluster)
        self.distributed.pop(cluster, None)
