"""Configuration of the reconciler, loaded from a YAML file.

Every setting has a default so an empty file, or no file at all, gives a
working configuration for an OpenShift hub managed by Open Cluster
Management. Example:

```yaml
sources:
  hub:
    namespace: openshift-config-managed
    name: default-ingress-cert
  timeout: 30
retry:
  max_attempts: 60
  interval: 60
  multiplier: 1.0
max_workers: 10
```
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path

import aiofiles
from mashumaro.exceptions import InvalidFieldValue, MissingField
import yaml

from .cluster.kubectl import DEFAULT_KUBECTL, InventoryConfig
from .descriptor import TargetConfig
from .exceptions import InputException
from .manifest import BaseManifest
from .retry import CompliancePollConfig, RetryPolicy
from .source import SourceConfig
from .transport.policy import PolicyConfig

__all__ = [
    "ReconcilerConfig",
    "load_config",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 10


@dataclass
class ReconcilerConfig(BaseManifest):
    """Settings for one reconciler."""

    sources: SourceConfig = field(default_factory=SourceConfig)
    """Where CA material is read on the hub and managed clusters."""

    target: TargetConfig = field(default_factory=TargetConfig)
    """Where the merged bundle is installed."""

    retry: RetryPolicy = field(default_factory=RetryPolicy)
    """Backoff and retry budget for failing targets."""

    compliance: CompliancePollConfig = field(default_factory=CompliancePollConfig)
    """How long to wait for a target to confirm an apply."""

    inventory: InventoryConfig = field(default_factory=InventoryConfig)
    """Which managed clusters are part of the fleet."""

    policy: PolicyConfig = field(default_factory=PolicyConfig)
    """How policies are written on the hub."""

    max_workers: int = DEFAULT_MAX_WORKERS
    """Targets processed concurrently."""

    verify_compliant: bool = False
    """Re-check compliant targets on every pass to detect drift."""

    kubectl: str = DEFAULT_KUBECTL
    """The `oc` or `kubectl` binary."""

    kubeconfig: str | None = None
    """Kubeconfig of the hub, or the ambient configuration when unset."""

    def validate(self) -> None:
        """Raise `InputException` for settings that can never work."""
        for name, value in (
            ("max_workers", self.max_workers),
            ("retry.max_attempts", self.retry.max_attempts),
            ("compliance.attempts", self.compliance.attempts),
        ):
            if not isinstance(value, int) or value < 1:
                raise InputException(f"{name} must be a positive integer: {value!r}")


async def load_config(path: Path | None) -> ReconcilerConfig:
    """Read the configuration file, returning the defaults when there is none."""
    if path is None:
        return ReconcilerConfig()
    try:
        async with aiofiles.open(str(path)) as config_file:
            content = await config_file.read()
    except OSError as err:
        raise InputException(f"Unable to read config file {path}: {err}") from err
    if not content.strip():
        return ReconcilerConfig()
    try:
        config = ReconcilerConfig.parse_yaml(content)
    except (MissingField, InvalidFieldValue, yaml.YAMLError, ValueError) as err:
        raise InputException(f"Invalid config file {path}: {err}") from err
    config.validate()
    _LOGGER.debug("Loaded config from %s", path)
    return config
