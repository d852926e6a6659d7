"""Representation of the kubernetes objects that hold and reference trust bundles.

Only the handful of fields fleet-trust reads or writes are modelled. Objects
read from a cluster are parsed from the structured `-o json` output of the
API, never from free text.
"""

from dataclasses import dataclass, field
import logging
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin
from mashumaro.codecs.yaml import yaml_decode, yaml_encode
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "BaseManifest",
    "NamedResource",
    "ObjectRef",
    "ConfigMap",
    "Proxy",
    "FINGERPRINT_ANNOTATION",
]

_LOGGER = logging.getLogger(__name__)


CONFIG_MAP_KIND = "ConfigMap"
PROXY_KIND = "Proxy"
PROXY_API_VERSION = "config.openshift.io/v1"
PROXY_NAME = "cluster"
DEFAULT_BUNDLE_KEY = "ca-bundle.crt"

# Annotation on an installed bundle object recording the fingerprint it holds
FINGERPRINT_ANNOTATION = "fleet-trust.io/fingerprint"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "fleet-trust"


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all serializable objects."""

    @classmethod
    def parse_yaml(cls, content: str) -> Any:
        """Parse a serialized object."""
        return yaml_decode(content, cls)

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml_encode(self, self.__class__)  # type: ignore[return-value]

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class ObjectRef(BaseManifest):
    """A reference to a key within a ConfigMap holding PEM content."""

    namespace: str
    """The namespace of the ConfigMap."""

    name: str
    """The name of the ConfigMap."""

    key: str = DEFAULT_BUNDLE_KEY
    """The data key holding the concatenated PEM blocks."""

    @property
    def resource(self) -> NamedResource:
        """The identifier of the referenced object."""
        return NamedResource(CONFIG_MAP_KIND, self.namespace, self.name)


@dataclass
class ConfigMap(BaseManifest):
    """A ConfigMap is an API object used to store data in key-value pairs."""

    kind: ClassVar[str] = CONFIG_MAP_KIND
    """The kind of the ConfigMap."""

    name: str
    """The name of the ConfigMap."""

    namespace: str | None = None
    """The namespace of the ConfigMap."""

    data: dict[str, str] = field(default_factory=dict)
    """The data in the ConfigMap."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations on the ConfigMap."""

    labels: dict[str, str] = field(default_factory=dict)
    """Labels on the ConfigMap."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ConfigMap":
        """Parse a config map object from a kubernetes resource."""
        _check_version(doc, "v1")
        if doc.get("kind") != CONFIG_MAP_KIND:
            raise InputException(f"Invalid {cls} unexpected kind: {doc}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
        return ConfigMap(
            name=name,
            namespace=metadata.get("namespace"),
            data=dict(doc.get("data") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            labels=dict(metadata.get("labels") or {}),
        )

    @property
    def fingerprint(self) -> str | None:
        """The fingerprint recorded when fleet-trust installed this object."""
        return self.annotations.get(FINGERPRINT_ANNOTATION)

    def to_doc(self) -> dict[str, Any]:
        """Return the kubernetes resource for this object."""
        metadata: dict[str, Any] = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        return {
            "apiVersion": "v1",
            "kind": CONFIG_MAP_KIND,
            "metadata": metadata,
            "data": dict(self.data),
        }


@dataclass
class Proxy(BaseManifest):
    """The cluster wide egress proxy configuration."""

    kind: ClassVar[str] = PROXY_KIND
    """The kind of the Proxy."""

    name: str = PROXY_NAME
    """The name of the Proxy, there is a single one per cluster."""

    trusted_ca: str | None = None
    """The name of the ConfigMap in openshift-config holding trusted CAs."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Proxy":
        """Parse a proxy object from a kubernetes resource."""
        _check_version(doc, "config.openshift.io")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        spec = doc.get("spec") or {}
        return Proxy(
            name=metadata.get("name", PROXY_NAME),
            trusted_ca=(spec.get("trustedCA") or {}).get("name") or None,
        )

    @staticmethod
    def trusted_ca_patch(config_map_name: str) -> dict[str, Any]:
        """Return a merge patch pointing the proxy at a trusted CA ConfigMap."""
        return {"spec": {"trustedCA": {"name": config_map_name}}}
