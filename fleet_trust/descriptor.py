"""Generates the declarative content that installs a bundle on a cluster.

The output is a pure function of the bundle fingerprint: certificates are
rendered in sorted order and YAML keys are sorted, so an unchanged bundle
always produces byte-identical manifests and the transport can recognize a
no-op push.
"""

from dataclasses import dataclass, field
import logging
from typing import Any

import yaml

from .bundle import TrustBundle
from .manifest import (
    FINGERPRINT_ANNOTATION,
    MANAGED_BY,
    MANAGED_BY_LABEL,
    PROXY_API_VERSION,
    PROXY_KIND,
    PROXY_NAME,
    ConfigMap,
    NamedResource,
    ObjectRef,
    Proxy,
)

__all__ = [
    "TargetConfig",
    "DistributionManifest",
    "bundle_config_map",
    "describe",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_APPLY_TIMEOUT = 60.0
PROXY_RESOURCE = NamedResource(PROXY_KIND, None, PROXY_NAME)


def _default_target() -> ObjectRef:
    return ObjectRef(namespace="openshift-config", name="fleet-trust-ca-bundle")


@dataclass
class TargetConfig:
    """Where the merged bundle is installed on every cluster."""

    bundle: ObjectRef = field(default_factory=_default_target)
    """The ConfigMap that receives the bundle. The proxy requires openshift-config."""

    patch_proxy: bool = True
    """Whether to point the cluster proxy's trustedCA at the bundle."""

    apply_timeout: float = DEFAULT_APPLY_TIMEOUT
    """Seconds allowed for one apply to one cluster."""


def bundle_config_map(ref: ObjectRef, content: str, fingerprint: str) -> ConfigMap:
    """Return the ConfigMap holding bundle content, annotated with its fingerprint."""
    return ConfigMap(
        name=ref.name,
        namespace=ref.namespace,
        data={ref.key: content},
        annotations={FINGERPRINT_ANNOTATION: fingerprint},
        labels={MANAGED_BY_LABEL: MANAGED_BY},
    )


@dataclass(frozen=True)
class DistributionManifest:
    """Objects every managed cluster must end up with."""

    fingerprint: str
    """Fingerprint of the bundle the manifest installs."""

    config_map: dict[str, Any]
    """The bundle ConfigMap resource."""

    proxy_patch: dict[str, Any] | None
    """A merge patch for the cluster Proxy, or None when not managed."""

    @property
    def proxy_object(self) -> dict[str, Any] | None:
        """The proxy patch expressed as a partial Proxy object."""
        if self.proxy_patch is None:
            return None
        return {
            "apiVersion": PROXY_API_VERSION,
            "kind": PROXY_KIND,
            "metadata": {"name": PROXY_NAME},
            **self.proxy_patch,
        }

    @property
    def objects(self) -> list[dict[str, Any]]:
        """All objects in the manifest, bundle first."""
        if (proxy := self.proxy_object) is None:
            return [self.config_map]
        return [self.config_map, proxy]

    def yaml(self) -> str:
        """Render the manifest as a stable multi-document YAML string."""
        return yaml.dump_all(
            self.objects, sort_keys=True, explicit_start=True, default_flow_style=False
        )


def describe(
    bundle: TrustBundle, config: TargetConfig | None = None
) -> DistributionManifest:
    """Return the manifest that installs `bundle` on a managed cluster."""
    config = config or TargetConfig()
    config_map = bundle_config_map(
        config.bundle, bundle.canonical_content, bundle.fingerprint
    )
    proxy_patch = None
    if config.patch_proxy:
        proxy_patch = Proxy.trusted_ca_patch(config.bundle.name)
    _LOGGER.debug("Described %s as %s", bundle, config.bundle.resource)
    return DistributionManifest(
        fingerprint=bundle.fingerprint,
        config_map=config_map.to_doc(),
        proxy_patch=proxy_patch,
    )
