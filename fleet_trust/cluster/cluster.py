"""Interfaces to the clusters and the inventory that lists them."""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any

from fleet_trust.manifest import NamedResource

__all__ = [
    "ManagedCluster",
    "ClusterClient",
    "ClusterInventory",
]


@dataclass(frozen=True)
class ManagedCluster:
    """A managed cluster as reported by the inventory."""

    name: str
    """The name of the cluster, also used as its target id."""

    available: bool = True
    """Whether the control plane last reported the cluster as reachable."""


class ClusterClient(ABC):
    """Structured access to the API of a single cluster."""

    @abstractmethod
    async def get(self, resource: NamedResource) -> dict[str, Any] | None:
        """Return the object, or None if it does not exist."""

    @abstractmethod
    async def apply(self, doc: dict[str, Any]) -> None:
        """Create or update the object described by `doc`."""

    @abstractmethod
    async def patch(self, resource: NamedResource, patch: dict[str, Any]) -> None:
        """Apply a merge patch to an existing object."""

    @abstractmethod
    async def delete(self, resource: NamedResource) -> None:
        """Delete the object, succeeding if it does not exist."""


class ClusterInventory(ABC):
    """A read-only view of the managed clusters known to the hub."""

    @abstractmethod
    async def list_clusters(self) -> list[ManagedCluster]:
        """Return a snapshot of the managed clusters, in a stable order."""

    @abstractmethod
    def connect(self, cluster: str) -> AbstractAsyncContextManager[ClusterClient]:
        """Acquire a short-lived credential and return a client for the cluster.

        The credential is released when the context exits, whatever the
        outcome. Raises `CredentialUnavailable` if it can't be acquired.
        """
