"""Reading CA material from the hub and from managed clusters.

A read never raises for an expected failure. Each outcome is returned as a
`SourceReadResult` holding either the certificates or a typed `ReadError`,
and the caller decides whether a failed source matters for the pass.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
import logging

from .cluster import ClusterClient, ClusterInventory, ManagedCluster
from .context import trace_context
from .exceptions import (
    CommandException,
    FleetTrustException,
    InputException,
    MalformedPEM,
    ReadError,
    SourceMissing,
    Unreachable,
)
from .manifest import ConfigMap, ObjectRef
from .pem import CertificatePEM, parse_certificates

__all__ = [
    "SourceKind",
    "CertificateSource",
    "SourceReadResult",
    "SourceConfig",
    "SourceReader",
    "build_sources",
    "HUB_SOURCE_ID",
]

_LOGGER = logging.getLogger(__name__)

HUB_SOURCE_ID = "hub"
DEFAULT_SOURCE_TIMEOUT = 30.0


def _default_source() -> ObjectRef:
    return ObjectRef(namespace="openshift-config-managed", name="default-ingress-cert")


class SourceKind(StrEnum):
    """Where a certificate source lives."""

    HUB = "hub"
    MANAGED_CLUSTER = "managed-cluster"


@dataclass(frozen=True)
class CertificateSource:
    """A place CA material is read from during one pass."""

    id: str
    """Identifier of the source, the cluster name for managed clusters."""

    kind: SourceKind
    """Whether this is the hub or a managed cluster."""

    cluster: str | None = None
    """The managed cluster name, None for the hub."""

    reachable: bool = True
    """Liveness reported by the inventory when the pass started."""

    @classmethod
    def hub(cls) -> "CertificateSource":
        """Return the hub source."""
        return cls(id=HUB_SOURCE_ID, kind=SourceKind.HUB)

    @classmethod
    def managed(cls, cluster: ManagedCluster) -> "CertificateSource":
        """Return the source for a managed cluster."""
        return cls(
            id=cluster.name,
            kind=SourceKind.MANAGED_CLUSTER,
            cluster=cluster.name,
            reachable=cluster.available,
        )


@dataclass
class SourceReadResult:
    """The outcome of reading one source."""

    source: CertificateSource
    certificates: list[CertificatePEM] = field(default_factory=list)
    error: ReadError | None = None

    @property
    def ok(self) -> bool:
        """Return True if the source was read successfully."""
        return self.error is None


@dataclass
class SourceConfig:
    """Configuration for reading certificate sources."""

    hub: ObjectRef = field(default_factory=_default_source)
    """The trust bundle object read on the hub."""

    managed: ObjectRef = field(default_factory=_default_source)
    """The trust bundle object read on each managed cluster."""

    timeout: float = DEFAULT_SOURCE_TIMEOUT
    """Seconds allowed for each source, including credential acquisition."""


def build_sources(clusters: Sequence[ManagedCluster]) -> list[CertificateSource]:
    """Return the sources for a pass: the hub, then clusters in inventory order."""
    return [CertificateSource.hub()] + [
        CertificateSource.managed(cluster) for cluster in clusters
    ]


class SourceReader:
    """Reads PEM content from the hub and from managed clusters."""

    def __init__(
        self,
        hub: ClusterClient,
        inventory: ClusterInventory,
        config: SourceConfig | None = None,
    ) -> None:
        """Initialize SourceReader."""
        self._hub = hub
        self._inventory = inventory
        self._config = config or SourceConfig()

    async def read(self, source: CertificateSource) -> SourceReadResult:
        """Read the certificates of a single source."""
        with trace_context(f"read {source.id}"):
            try:
                certificates = await asyncio.wait_for(
                    self._read(source), self._config.timeout
                )
            except asyncio.TimeoutError:
                error: ReadError = Unreachable(
                    source.id, f"timed out after {self._config.timeout}s"
                )
            except ReadError as err:
                error = err
            except (FleetTrustException, OSError) as err:
                error = Unreachable(source.id, str(err))
            else:
                _LOGGER.debug(
                    "Read %d certificate(s) from %s", len(certificates), source.id
                )
                return SourceReadResult(source, certificates)
        _LOGGER.warning("Failed to read source %s: %s", source.id, error)
        return SourceReadResult(source, error=error)

    async def read_all(
        self, sources: Sequence[CertificateSource]
    ) -> list[SourceReadResult]:
        """Read all sources concurrently, returning results in input order."""
        return list(await asyncio.gather(*(self.read(source) for source in sources)))

    async def _read(self, source: CertificateSource) -> list[CertificatePEM]:
        if source.kind == SourceKind.HUB:
            return await self._read_object(self._hub, self._config.hub, source.id)
        if not source.reachable or source.cluster is None:
            raise Unreachable(source.id, "cluster is not available in the inventory")
        async with self._inventory.connect(source.cluster) as client:
            return await self._read_object(client, self._config.managed, source.id)

    @staticmethod
    async def _read_object(
        client: ClusterClient, ref: ObjectRef, source_id: str
    ) -> list[CertificatePEM]:
        try:
            doc = await client.get(ref.resource)
        except (CommandException, InputException) as err:
            raise Unreachable(source_id, str(err)) from err
        if doc is None:
            raise SourceMissing(source_id, f"{ref.resource} not found")
        try:
            config_map = ConfigMap.parse_doc(doc)
        except InputException as err:
            raise MalformedPEM(source_id, str(err)) from err
        if (content := config_map.data.get(ref.key)) is None:
            raise SourceMissing(source_id, f"{ref.resource} has no key '{ref.key}'")
        return parse_certificates(content, source_id)
