"""Merging CA material from many sources into one canonical trust bundle."""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
import hashlib
import logging

from .exceptions import NoSourcesAvailable
from .pem import CertificatePEM
from .source import SourceReadResult

__all__ = [
    "TrustBundle",
    "compute_fingerprint",
    "merge",
    "merge_results",
]

_LOGGER = logging.getLogger(__name__)

FINGERPRINT_PREFIX = "sha256:"


def compute_fingerprint(certificates: Iterable[CertificatePEM]) -> str:
    """Return a content hash over the set of certificates.

    The DER payloads are deduplicated and sorted before hashing so the result
    does not depend on the order the certificates were extracted in. Each
    payload is length prefixed so adjacent payloads can't be confused.
    """
    hasher = hashlib.sha256()
    for der in sorted({cert.der for cert in certificates}):
        hasher.update(len(der).to_bytes(4, "big"))
        hasher.update(der)
    return f"{FINGERPRINT_PREFIX}{hasher.hexdigest()}"


@dataclass(frozen=True)
class TrustBundle:
    """An ordered set of unique certificates and their fingerprint.

    A bundle is never modified; a new one is built whenever the set of
    certificates changes.
    """

    certificates: tuple[CertificatePEM, ...]
    """Unique certificates in first-seen order."""

    fingerprint: str
    """Hash of the certificate set, see `compute_fingerprint`."""

    @classmethod
    def from_certificates(cls, certificates: Iterable[CertificatePEM]) -> "TrustBundle":
        """Build a bundle, dropping duplicates while keeping first-seen order."""
        unique = tuple(dict.fromkeys(certificates))
        return cls(certificates=unique, fingerprint=compute_fingerprint(unique))

    @property
    def content(self) -> str:
        """Concatenated PEM blocks in first-seen order."""
        return "".join(cert.pem for cert in self.certificates)

    @property
    def canonical_content(self) -> str:
        """Concatenated PEM blocks in sorted order, a pure function of the fingerprint."""
        return "".join(cert.pem for cert in sorted(self.certificates))

    def __len__(self) -> int:
        return len(self.certificates)

    def __str__(self) -> str:
        return f"TrustBundle({len(self)} certificates, {self.fingerprint[:19]})"


def merge(per_source: Mapping[str, Sequence[CertificatePEM]]) -> TrustBundle:
    """Merge the certificates read from each source into one bundle.

    Sources are visited in mapping order, so callers pass the hub first and
    then managed clusters in inventory order to get a stable serialization.
    """
    certificates: list[CertificatePEM] = []
    for source_id, source_certs in per_source.items():
        _LOGGER.debug("Merging %d certificate(s) from %s", len(source_certs), source_id)
        certificates.extend(source_certs)
    bundle = TrustBundle.from_certificates(certificates)
    if (duplicates := len(certificates) - len(bundle)) > 0:
        _LOGGER.debug("Dropped %d duplicate certificate(s)", duplicates)
    return bundle


def merge_results(results: Sequence[SourceReadResult]) -> TrustBundle:
    """Merge the successful source reads of a pass.

    Failed sources contribute nothing. When no source succeeded no bundle is
    produced at all, so a total outage can never blank the trust store.
    """
    succeeded = {result.source.id: result.certificates for result in results if result.ok}
    if not succeeded:
        raise NoSourcesAvailable(
            f"All {len(results)} certificate source(s) failed, keeping last known bundle"
        )
    for result in results:
        if not result.ok:
            _LOGGER.warning(
                "Source %s excluded from this pass: %s", result.source.id, result.error
            )
    bundle = merge(succeeded)
    _LOGGER.info(
        "Merged %s from %d of %d source(s)", bundle, len(succeeded), len(results)
    )
    return bundle
