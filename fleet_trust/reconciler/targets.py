"""The two ways a bundle reaches a target: written directly, or via policy."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging

from fleet_trust.bundle import TrustBundle
from fleet_trust.descriptor import DistributionManifest
from fleet_trust.hub import LocalTrustConfigurator
from fleet_trust.transport import PolicyTransport

__all__ = [
    "DesiredState",
    "Distributor",
    "HubDistributor",
    "FleetDistributor",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DesiredState:
    """The canonical bundle of a pass and the manifest describing it."""

    bundle: TrustBundle
    manifest: DistributionManifest

    @property
    def fingerprint(self) -> str:
        """The fingerprint every target should converge on."""
        return self.bundle.fingerprint


class Distributor(ABC):
    """Moves the desired bundle to one target and observes the result."""

    @abstractmethod
    async def apply(self, desired: DesiredState) -> None:
        """Hand the desired state to the target, raising `ApplyError` on failure."""

    @abstractmethod
    async def observed_fingerprint(self) -> str | None:
        """Return the fingerprint the target reports as installed, if any."""


class HubDistributor(Distributor):
    """Installs the bundle on the hub itself."""

    def __init__(self, configurator: LocalTrustConfigurator) -> None:
        """Initialize HubDistributor."""
        self._configurator = configurator

    async def apply(self, desired: DesiredState) -> None:
        """Write the bundle and proxy reference on the hub."""
        result = await self._configurator.apply(desired.bundle)
        if not result.changed:
            _LOGGER.debug("Hub bundle already up to date")

    async def observed_fingerprint(self) -> str | None:
        """Read the fingerprint annotation of the installed bundle."""
        return await self._configurator.installed_fingerprint()


class FleetDistributor(Distributor):
    """Delivers the manifest to a managed cluster through the policy engine."""

    def __init__(self, transport: PolicyTransport, cluster: str) -> None:
        """Initialize FleetDistributor."""
        self._transport = transport
        self._cluster = cluster

    async def apply(self, desired: DesiredState) -> None:
        """Hand the manifest to the policy engine."""
        await self._transport.distribute(desired.manifest, self._cluster)

    async def observed_fingerprint(self) -> str | None:
        """Return the fingerprint only once the engine reports compliance."""
        signal = await self._transport.compliance(self._cluster)
        if not signal.compliant:
            return None
        return signal.fingerprint
