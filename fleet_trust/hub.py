"""Installs a trust bundle as the egress proxy trust store of one cluster.

Installing takes two writes: the bundle ConfigMap, then the `trustedCA`
reference on the cluster Proxy. Both must succeed for the cluster to be
considered converged, otherwise a `PartialApply` is raised so the bundle is
retried rather than assumed installed.
"""

import asyncio
from dataclasses import dataclass
import logging

from .bundle import TrustBundle
from .cluster import ClusterClient
from .descriptor import PROXY_RESOURCE, TargetConfig, bundle_config_map
from .exceptions import (
    ApplyError,
    ApplyTimeout,
    CommandException,
    CommandTimeout,
    InputException,
    PartialApply,
)
from .manifest import ConfigMap, Proxy
from .source import HUB_SOURCE_ID

__all__ = [
    "ApplyResult",
    "LocalTrustConfigurator",
    "HUB_TARGET_ID",
]

_LOGGER = logging.getLogger(__name__)

HUB_TARGET_ID = HUB_SOURCE_ID


@dataclass(frozen=True)
class ApplyResult:
    """The outcome of a successful apply."""

    changed: bool
    """False when the bundle was already installed and nothing was written."""


class LocalTrustConfigurator:
    """Installs bundles on a cluster reached through a ClusterClient."""

    def __init__(
        self,
        client: ClusterClient,
        config: TargetConfig | None = None,
        cluster_id: str = HUB_TARGET_ID,
    ) -> None:
        """Initialize LocalTrustConfigurator."""
        self._client = client
        self._config = config or TargetConfig()
        self._cluster_id = cluster_id

    async def installed_fingerprint(self) -> str | None:
        """Return the fingerprint of the installed bundle, if any."""
        if (doc := await self._client.get(self._config.bundle.resource)) is None:
            return None
        return ConfigMap.parse_doc(doc).fingerprint

    async def _proxy_trusted_ca(self) -> str | None:
        if (doc := await self._client.get(PROXY_RESOURCE)) is None:
            return None
        return Proxy.parse_doc(doc).trusted_ca

    async def apply(self, bundle: TrustBundle) -> ApplyResult:
        """Install the bundle, doing nothing if it is already installed."""
        try:
            return await asyncio.wait_for(
                self._apply(bundle), self._config.apply_timeout
            )
        except asyncio.TimeoutError as err:
            raise ApplyTimeout(
                self._cluster_id,
                f"apply did not finish within {self._config.apply_timeout}s",
            ) from err

    async def _apply(self, bundle: TrustBundle) -> ApplyResult:
        ref = self._config.bundle
        try:
            installed = await self.installed_fingerprint()
            proxy_ca = ref.name
            if self._config.patch_proxy:
                proxy_ca = await self._proxy_trusted_ca()
        except CommandTimeout as err:
            raise ApplyTimeout(self._cluster_id, str(err)) from err
        except (CommandException, InputException) as err:
            raise ApplyError(
                self._cluster_id, f"could not read installed bundle: {err}"
            ) from err

        if installed == bundle.fingerprint and proxy_ca == ref.name:
            _LOGGER.debug(
                "%s already has %s installed", self._cluster_id, bundle.fingerprint
            )
            return ApplyResult(changed=False)

        config_map = bundle_config_map(ref, bundle.content, bundle.fingerprint)
        try:
            await self._client.apply(config_map.to_doc())
        except CommandTimeout as err:
            raise ApplyTimeout(self._cluster_id, str(err)) from err
        except CommandException as err:
            raise PartialApply(self._cluster_id, "bundle", str(err)) from err
        _LOGGER.info("Wrote %s to %s on %s", bundle, ref.resource, self._cluster_id)

        if proxy_ca != ref.name:
            try:
                await self._client.patch(
                    PROXY_RESOURCE, Proxy.trusted_ca_patch(ref.name)
                )
            except CommandException as err:
                raise PartialApply(self._cluster_id, "proxy", str(err)) from err
            _LOGGER.info(
                "Pointed %s trustedCA at %s on %s",
                PROXY_RESOURCE,
                ref.name,
                self._cluster_id,
            )
        return ApplyResult(changed=True)
