"""In-memory clusters and inventory, used for dry runs and tests."""

from collections.abc import AsyncGenerator
import contextlib
import copy
import logging
from typing import Any

from fleet_trust.exceptions import CommandException, CredentialUnavailable
from fleet_trust.manifest import NamedResource

from .cluster import ClusterClient, ClusterInventory, ManagedCluster

__all__ = [
    "InMemoryClusterClient",
    "InMemoryInventory",
]

_LOGGER = logging.getLogger(__name__)


def _resource_id(doc: dict[str, Any]) -> NamedResource:
    metadata = doc.get("metadata") or {}
    return NamedResource(doc["kind"], metadata.get("namespace"), metadata["name"])


def merge_patch(target: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Apply a JSON merge patch (RFC 7386), returning the updated object."""
    result = copy.deepcopy(target)
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge_patch(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class InMemoryClusterClient(ClusterClient):
    """A cluster whose objects live in a dictionary.

    Failures can be injected by marking the cluster unreachable or by naming
    kinds whose writes are rejected.
    """

    def __init__(self, name: str = "hub") -> None:
        """Initialize InMemoryClusterClient."""
        self.name = name
        self.objects: dict[NamedResource, dict[str, Any]] = {}
        self.reachable = True
        self.reject_kinds: set[str] = set()
        self.writes: list[tuple[str, NamedResource]] = []

    def add(self, doc: dict[str, Any]) -> None:
        """Seed an object without recording a write."""
        self.objects[_resource_id(doc)] = copy.deepcopy(doc)

    def _check(self, resource: NamedResource, write: bool = False) -> None:
        if not self.reachable:
            raise CommandException(f"Unable to connect to cluster {self.name}")
        if write and resource.kind in self.reject_kinds:
            raise CommandException(
                f"Cluster {self.name} rejected write to {resource}"
            )

    async def get(self, resource: NamedResource) -> dict[str, Any] | None:
        """Return a copy of the object, or None if it does not exist."""
        self._check(resource)
        if (doc := self.objects.get(resource)) is None:
            return None
        return copy.deepcopy(doc)

    async def apply(self, doc: dict[str, Any]) -> None:
        """Create or replace the object."""
        resource = _resource_id(doc)
        self._check(resource, write=True)
        _LOGGER.debug("Cluster %s: apply %s", self.name, resource)
        self.writes.append(("apply", resource))
        self.objects[resource] = copy.deepcopy(doc)

    async def patch(self, resource: NamedResource, patch: dict[str, Any]) -> None:
        """Merge patch an existing object."""
        self._check(resource, write=True)
        if (doc := self.objects.get(resource)) is None:
            raise CommandException(f"Cluster {self.name}: {resource} not found")
        _LOGGER.debug("Cluster %s: patch %s", self.name, resource)
        self.writes.append(("patch", resource))
        self.objects[resource] = merge_patch(doc, patch)

    async def delete(self, resource: NamedResource) -> None:
        """Remove the object if present."""
        self._check(resource, write=True)
        if self.objects.pop(resource, None) is not None:
            self.writes.append(("delete", resource))


class InMemoryInventory(ClusterInventory):
    """An inventory of in-memory clusters, listed in insertion order."""

    def __init__(self) -> None:
        """Initialize InMemoryInventory."""
        self.clusters: dict[str, InMemoryClusterClient] = {}
        self.available: dict[str, bool] = {}
        self.reachable = True
        self.credential_failures: set[str] = set()
        self.active_credentials = 0

    def add_cluster(self, name: str, available: bool = True) -> InMemoryClusterClient:
        """Register a managed cluster and return its client."""
        client = InMemoryClusterClient(name)
        self.clusters[name] = client
        self.available[name] = available
        return client

    def remove_cluster(self, name: str) -> None:
        """Decommission a managed cluster."""
        del self.clusters[name]
        del self.available[name]

    async def list_clusters(self) -> list[ManagedCluster]:
        """Return a snapshot of the managed clusters."""
        if not self.reachable:
            raise CommandException("Inventory is unreachable")
        return [
            ManagedCluster(name=name, available=self.available[name])
            for name in self.clusters
        ]

    @contextlib.asynccontextmanager
    async def connect(self, cluster: str) -> AsyncGenerator[ClusterClient, None]:
        """Return the cluster's client, tracking the credential lifetime."""
        if cluster in self.credential_failures or cluster not in self.clusters:
            raise CredentialUnavailable(cluster, "no credential available")
        self.active_credentials += 1
        try:
            yield self.clusters[cluster]
        finally:
            self.active_credentials -= 1
