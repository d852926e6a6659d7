"""Distribution through Open Cluster Management governance policies.

Each managed cluster gets its own `Policy` wrapping a `ConfigurationPolicy`
with the manifest objects, a `Placement` selecting the cluster by name and a
`PlacementBinding` tying the two together. The policy framework replicates
the policy into the cluster's namespace on the hub and reports compliance
there, which is what `compliance` reads back.

The policy namespace must be bound to a `ManagedClusterSet` containing the
target clusters for the placement to select them.
"""

from dataclasses import dataclass
import logging
from typing import Any

from slugify import slugify

from fleet_trust.cluster import ClusterClient
from fleet_trust.descriptor import DistributionManifest
from fleet_trust.exceptions import (
    ApplyTimeout,
    CommandException,
    CommandTimeout,
    TransportRejected,
)
from fleet_trust.manifest import FINGERPRINT_ANNOTATION, NamedResource

from .transport import ComplianceSignal, PolicyTransport

__all__ = [
    "PolicyConfig",
    "PolicyEngineTransport",
    "policy_documents",
]

_LOGGER = logging.getLogger(__name__)

POLICY_API_VERSION = "policy.open-cluster-management.io/v1"
POLICY_GROUP = "policy.open-cluster-management.io"
PLACEMENT_API_VERSION = "cluster.open-cluster-management.io/v1beta1"
PLACEMENT_GROUP = "cluster.open-cluster-management.io"
CLUSTER_NAME_LABEL = "name"
COMPLIANT = "Compliant"

# Keep delivering to clusters the hub temporarily can't see
UNREACHABLE_TAINTS = [
    "cluster.open-cluster-management.io/unreachable",
    "cluster.open-cluster-management.io/unavailable",
]


@dataclass
class PolicyConfig:
    """Configuration for the policy objects created on the hub."""

    namespace: str = "fleet-trust"
    """Hub namespace holding the policies, placements and bindings."""

    name_prefix: str = "fleet-trust-ca"
    """Prefix of the per cluster object names."""

    remediation_action: str = "enforce"
    """Whether the policy engine enforces or only reports the manifest."""

    severity: str = "high"
    """Severity reported for a non-compliant cluster."""


def _object_name(config: PolicyConfig, cluster: str) -> str:
    return slugify(f"{config.name_prefix}-{cluster}", max_length=63)


def policy_documents(
    manifest: DistributionManifest, cluster: str, config: PolicyConfig
) -> list[dict[str, Any]]:
    """Return the Policy, Placement and PlacementBinding for one cluster."""
    name = _object_name(config, cluster)
    object_templates = [
        {"complianceType": "mustonlyhave", "objectDefinition": manifest.config_map}
    ]
    if (proxy := manifest.proxy_object) is not None:
        object_templates.append(
            {"complianceType": "musthave", "objectDefinition": proxy}
        )
    policy = {
        "apiVersion": POLICY_API_VERSION,
        "kind": "Policy",
        "metadata": {
            "name": name,
            "namespace": config.namespace,
            "annotations": {
                FINGERPRINT_ANNOTATION: manifest.fingerprint,
                "policy.open-cluster-management.io/standards": "NIST SP 800-53",
                "policy.open-cluster-management.io/categories": (
                    "SC System and Communications Protection"
                ),
                "policy.open-cluster-management.io/controls": "SC-8",
            },
        },
        "spec": {
            "disabled": False,
            "remediationAction": config.remediation_action,
            "policy-templates": [
                {
                    "objectDefinition": {
                        "apiVersion": POLICY_API_VERSION,
                        "kind": "ConfigurationPolicy",
                        "metadata": {"name": name},
                        "spec": {
                            "remediationAction": config.remediation_action,
                            "severity": config.severity,
                            "object-templates": object_templates,
                        },
                    }
                }
            ],
        },
    }
    placement = {
        "apiVersion": PLACEMENT_API_VERSION,
        "kind": "Placement",
        "metadata": {"name": name, "namespace": config.namespace},
        "spec": {
            "predicates": [
                {
                    "requiredClusterSelector": {
                        "labelSelector": {
                            "matchExpressions": [
                                {
                                    "key": CLUSTER_NAME_LABEL,
                                    "operator": "In",
                                    "values": [cluster],
                                }
                            ]
                        }
                    }
                }
            ],
            "tolerations": [
                {"key": taint, "operator": "Exists"} for taint in UNREACHABLE_TAINTS
            ],
        },
    }
    binding = {
        "apiVersion": POLICY_API_VERSION,
        "kind": "PlacementBinding",
        "metadata": {"name": name, "namespace": config.namespace},
        "placementRef": {
            "apiGroup": PLACEMENT_GROUP,
            "kind": "Placement",
            "name": name,
        },
        "subjects": [{"apiGroup": POLICY_GROUP, "kind": "Policy", "name": name}],
    }
    return [policy, placement, binding]


class PolicyEngineTransport(PolicyTransport):
    """Distributes manifests by writing governance policies on the hub."""

    def __init__(self, hub: ClusterClient, config: PolicyConfig | None = None) -> None:
        """Initialize PolicyEngineTransport."""
        self._hub = hub
        self._config = config or PolicyConfig()

    async def distribute(self, manifest: DistributionManifest, cluster: str) -> None:
        """Write the policy objects for the cluster."""
        for doc in policy_documents(manifest, cluster, self._config):
            try:
                await self._hub.apply(doc)
            except CommandTimeout as err:
                raise ApplyTimeout(cluster, str(err)) from err
            except CommandException as err:
                raise TransportRejected(
                    cluster, f"{doc['kind']} was not accepted: {err}"
                ) from err
        _LOGGER.debug("Policy for %s set to %s", cluster, manifest.fingerprint)

    async def compliance(self, cluster: str) -> ComplianceSignal:
        """Read the status of the policy replicated to the cluster namespace."""
        name = _object_name(self._config, cluster)
        replicated = NamedResource("Policy", cluster, f"{self._config.namespace}.{name}")
        try:
            doc = await self._hub.get(replicated)
        except CommandException as err:
            _LOGGER.debug("Could not read compliance of %s: %s", cluster, err)
            return ComplianceSignal(compliant=False)
        if doc is None:
            return ComplianceSignal(compliant=False)
        annotations = (doc.get("metadata") or {}).get("annotations") or {}
        status = (doc.get("status") or {}).get("compliant")
        return ComplianceSignal(
            compliant=status == COMPLIANT,
            fingerprint=annotations.get(FINGERPRINT_ANNOTATION),
        )

    async def withdraw(self, cluster: str) -> None:
        """Delete the policy objects for the cluster."""
        name = _object_name(self._config, cluster)
        for kind in ("PlacementBinding", "Placement", "Policy"):
            await self._hub.delete(NamedResource(kind, self._config.namespace, name))
        _LOGGER.info("Withdrew policy %s for %s", name, cluster)
