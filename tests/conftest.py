"""Shared fixtures for fleet-trust tests.

Certificates are fake DER payloads: only PEM framing and the leading SEQUENCE
tag are checked, so any bytes starting with 0x30 make a valid certificate.
"""

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from fleet_trust.cluster import InMemoryClusterClient, InMemoryInventory
from fleet_trust.pem import CertificatePEM

SOURCE_NAMESPACE = "openshift-config-managed"
SOURCE_NAME = "default-ingress-cert"
SOURCE_KEY = "ca-bundle.crt"

SeedFn = Callable[[InMemoryClusterClient, Sequence[CertificatePEM]], None]


def make_certificate(seed: int) -> CertificatePEM:
    """Return a fake certificate unique to `seed`."""
    return CertificatePEM(b"0\x82" + seed.to_bytes(2, "big") + bytes([seed % 251]) * 60)


def ingress_ca(content: str) -> dict[str, Any]:
    """Return the ingress CA ConfigMap a cluster publishes."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": SOURCE_NAME, "namespace": SOURCE_NAMESPACE},
        "data": {SOURCE_KEY: content},
    }


def proxy() -> dict[str, Any]:
    """Return a cluster proxy without a trusted CA."""
    return {
        "apiVersion": "config.openshift.io/v1",
        "kind": "Proxy",
        "metadata": {"name": "cluster"},
        "spec": {},
    }


@pytest.fixture(name="cert_a")
def cert_a_fixture() -> CertificatePEM:
    return make_certificate(1)


@pytest.fixture(name="cert_b")
def cert_b_fixture() -> CertificatePEM:
    return make_certificate(2)


@pytest.fixture(name="cert_c")
def cert_c_fixture() -> CertificatePEM:
    return make_certificate(3)


@pytest.fixture(name="seed_certificates")
def seed_certificates_fixture() -> SeedFn:
    """Return a function publishing certificates on a cluster."""

    def seed(
        client: InMemoryClusterClient, certificates: Sequence[CertificatePEM]
    ) -> None:
        client.add(ingress_ca("".join(cert.pem for cert in certificates)))

    return seed


@pytest.fixture(name="hub")
def hub_fixture(
    seed_certificates: SeedFn, cert_a: CertificatePEM, cert_b: CertificatePEM
) -> InMemoryClusterClient:
    """A hub publishing certificates A and B."""
    client = InMemoryClusterClient("hub")
    client.add(proxy())
    seed_certificates(client, [cert_a, cert_b])
    return client


@pytest.fixture(name="inventory")
def inventory_fixture() -> InMemoryInventory:
    return InMemoryInventory()
