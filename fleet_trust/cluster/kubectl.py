"""Cluster access through the `oc` / `kubectl` command line.

Every read asks for `-o json` so results are parsed as structured objects.
Absence is detected with `--ignore-not-found`, which prints nothing instead of
failing, so no error text ever needs to be inspected.
"""

import base64
import binascii
from collections.abc import AsyncGenerator
import contextlib
from dataclasses import dataclass, field
import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any

import aiofiles
from slugify import slugify

from fleet_trust import command
from fleet_trust.exceptions import (
    CommandException,
    CredentialUnavailable,
    InputException,
)
from fleet_trust.manifest import NamedResource

from .cluster import ClusterClient, ClusterInventory, ManagedCluster

__all__ = [
    "KubectlClient",
    "KubectlInventory",
    "InventoryConfig",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_KUBECTL = "oc"
DEFAULT_TIMEOUT = 30.0
MANAGED_CLUSTER = "managedclusters.cluster.open-cluster-management.io"
AVAILABLE_CONDITION = "ManagedClusterConditionAvailable"
KUBECONFIG_KEY = "kubeconfig"


# Fully qualified resource types for kinds whose short name may be ambiguous
RESOURCE_TYPES = {
    "Proxy": "proxies.config.openshift.io",
    "Policy": "policies.policy.open-cluster-management.io",
    "Placement": "placements.cluster.open-cluster-management.io",
    "PlacementBinding": "placementbindings.policy.open-cluster-management.io",
}


def _resource_type(kind: str) -> str:
    """Return the resource type argument for a kind."""
    return RESOURCE_TYPES.get(kind, kind.lower())


@dataclass
class KubectlClient(ClusterClient):
    """A ClusterClient that shells out to `oc` or `kubectl`."""

    kubectl: str = DEFAULT_KUBECTL
    """The command line binary to run."""

    kubeconfig: Path | None = None
    """Kubeconfig to use, or the ambient configuration when unset."""

    timeout: float = DEFAULT_TIMEOUT
    """Seconds to wait for each call."""

    def _command(self, args: list[str]) -> command.Command:
        cmd = [self.kubectl]
        if self.kubeconfig:
            cmd.append(f"--kubeconfig={self.kubeconfig}")
        cmd.extend(args)
        return command.Command(cmd, timeout=self.timeout)

    def _target_args(self, resource: NamedResource) -> list[str]:
        args = [_resource_type(resource.kind), resource.name]
        if resource.namespace:
            args.extend(["-n", resource.namespace])
        return args

    async def get(self, resource: NamedResource) -> dict[str, Any] | None:
        """Return the object, or None if it does not exist."""
        out = await command.run(
            self._command(
                [
                    "get",
                    *self._target_args(resource),
                    "-o",
                    "json",
                    "--ignore-not-found",
                ]
            )
        )
        if not out.strip():
            return None
        return self._decode(out, str(resource))

    async def list_objects(
        self, resource_type: str, namespace: str | None = None
    ) -> list[dict[str, Any]]:
        """Return all objects of a type, optionally within a namespace."""
        args = ["get", resource_type, "-o", "json"]
        if namespace:
            args.extend(["-n", namespace])
        doc = self._decode(await command.run(self._command(args)), resource_type)
        return list(doc.get("items") or [])

    async def apply(self, doc: dict[str, Any]) -> None:
        """Create or update the object described by `doc`."""
        await command.run(
            self._command(["apply", "-f", "-"]),
            stdin=json.dumps(doc).encode("utf-8"),
        )

    async def patch(self, resource: NamedResource, patch: dict[str, Any]) -> None:
        """Apply a merge patch to an existing object."""
        await command.run(
            self._command(
                [
                    "patch",
                    *self._target_args(resource),
                    "--type=merge",
                    "-p",
                    json.dumps(patch),
                ]
            )
        )

    async def delete(self, resource: NamedResource) -> None:
        """Delete the object, succeeding if it does not exist."""
        await command.run(
            self._command(
                ["delete", *self._target_args(resource), "--ignore-not-found"]
            )
        )

    @staticmethod
    def _decode(out: str, what: str) -> dict[str, Any]:
        try:
            doc = json.loads(out)
        except json.JSONDecodeError as err:
            raise InputException(f"Invalid json output for {what}: {err}") from err
        if not isinstance(doc, dict):
            raise InputException(f"Expected an object for {what}, got {type(doc)}")
        return doc


@dataclass
class InventoryConfig:
    """Configuration for discovering managed clusters on the hub."""

    exclude: list[str] = field(default_factory=lambda: ["local-cluster"])
    """Managed clusters that are not distribution targets (e.g. the hub itself)."""

    kubeconfig_secret_suffixes: list[str] = field(
        default_factory=lambda: ["admin-kubeconfig", "kubeconfig"]
    )
    """Secret name suffixes searched, in order, in each cluster's namespace."""


def _is_available(doc: dict[str, Any]) -> bool:
    for condition in (doc.get("status") or {}).get("conditions") or []:
        if condition.get("type") == AVAILABLE_CONDITION:
            return bool(condition.get("status") == "True")
    return False


class KubectlInventory(ClusterInventory):
    """Reads Open Cluster Management `ManagedCluster` objects from the hub."""

    def __init__(
        self, hub: KubectlClient, config: InventoryConfig | None = None
    ) -> None:
        """Initialize KubectlInventory."""
        self._hub = hub
        self._config = config or InventoryConfig()

    async def list_clusters(self) -> list[ManagedCluster]:
        """Return a snapshot of the managed clusters, sorted by name."""
        clusters = []
        for doc in await self._hub.list_objects(MANAGED_CLUSTER):
            name = (doc.get("metadata") or {}).get("name")
            if not name:
                raise InputException(f"ManagedCluster missing metadata.name: {doc}")
            if name in self._config.exclude:
                continue
            clusters.append(ManagedCluster(name=name, available=_is_available(doc)))
        clusters.sort(key=lambda cluster: cluster.name)
        _LOGGER.debug("Inventory snapshot: %s", [c.name for c in clusters])
        return clusters

    async def _kubeconfig(self, cluster: str) -> bytes:
        """Return the decoded kubeconfig for a cluster from its namespace."""
        try:
            secrets = await self._hub.list_objects("secrets", namespace=cluster)
        except (CommandException, InputException) as err:
            raise CredentialUnavailable(cluster, str(err)) from err
        by_name = {
            (doc.get("metadata") or {}).get("name", ""): doc for doc in secrets
        }
        for suffix in self._config.kubeconfig_secret_suffixes:
            for name, doc in sorted(by_name.items()):
                if not name.endswith(suffix):
                    continue
                if not (encoded := (doc.get("data") or {}).get(KUBECONFIG_KEY)):
                    continue
                try:
                    return base64.b64decode(encoded, validate=True)
                except binascii.Error as err:
                    raise CredentialUnavailable(
                        cluster, f"secret {name} has an invalid kubeconfig"
                    ) from err
        raise CredentialUnavailable(cluster, "no kubeconfig secret found")

    @contextlib.asynccontextmanager
    async def connect(self, cluster: str) -> AsyncGenerator[ClusterClient, None]:
        """Write the cluster's kubeconfig to a private scratch directory.

        The directory is unique to this call and removed on exit, so
        concurrent workers never share a kubeconfig path.
        """
        kubeconfig = await self._kubeconfig(cluster)
        with tempfile.TemporaryDirectory(
            prefix=f"fleet-trust-{slugify(cluster, max_length=40)}-"
        ) as tmp_dir:
            path = Path(tmp_dir) / "kubeconfig"
            async with aiofiles.open(str(path), mode="wb") as kubeconfig_file:
                await kubeconfig_file.write(kubeconfig)
            os.chmod(path, 0o600)
            _LOGGER.debug("Acquired credential for %s", cluster)
            try:
                yield KubectlClient(
                    kubectl=self._hub.kubectl,
                    kubeconfig=path,
                    timeout=self._hub.timeout,
                )
            finally:
                _LOGGER.debug("Released credential for %s", cluster)
