"""Extraction and canonical encoding of PEM certificate blocks.

Only the PEM framing is validated here: a block must have matching
`BEGIN CERTIFICATE` / `END CERTIFICATE` markers around a base64 body that
decodes to a DER SEQUENCE. Nothing about the certificate itself (expiry,
signature, chain) is inspected.
"""

import base64
import binascii
from dataclasses import dataclass
import hashlib
import logging
import textwrap

from .exceptions import MalformedPEM

__all__ = [
    "CertificatePEM",
    "parse_certificates",
    "BEGIN_MARKER",
    "END_MARKER",
]

_LOGGER = logging.getLogger(__name__)

BEGIN_MARKER = "-----BEGIN CERTIFICATE-----"
END_MARKER = "-----END CERTIFICATE-----"
LINE_LENGTH = 64

# Every DER encoded certificate is an ASN.1 SEQUENCE
DER_SEQUENCE_TAG = 0x30


@dataclass(frozen=True, order=True)
class CertificatePEM:
    """A single certificate, identified by its decoded DER payload."""

    der: bytes
    """The decoded certificate bytes."""

    @property
    def pem(self) -> str:
        """Return the canonical PEM encoding, terminated by a newline."""
        body = base64.b64encode(self.der).decode("ascii")
        lines = [BEGIN_MARKER, *textwrap.wrap(body, LINE_LENGTH), END_MARKER]
        return "\n".join(lines) + "\n"

    @property
    def digest(self) -> str:
        """Return a short sha256 digest of the payload for log messages."""
        return hashlib.sha256(self.der).hexdigest()[:12]

    def __str__(self) -> str:
        return f"Certificate({self.digest})"


def _decode_block(body: str) -> bytes | None:
    """Decode the base64 body of a block, returning None when invalid."""
    compact = "".join(body.split())
    if not compact:
        return None
    try:
        der = base64.b64decode(compact, validate=True)
    except binascii.Error:
        return None
    if not der or der[0] != DER_SEQUENCE_TAG:
        return None
    return der


def parse_certificates(content: str, source_id: str) -> list[CertificatePEM]:
    """Return every well framed certificate block in `content`, in order.

    Malformed blocks are dropped with a warning. A blank payload returns an
    empty list; a non-blank payload without a single valid block raises
    `MalformedPEM` for the whole source.
    """
    if not content.strip():
        return []
    results: list[CertificatePEM] = []
    dropped = 0
    for index, part in enumerate(content.split(BEGIN_MARKER)[1:]):
        body, sep, _ = part.partition(END_MARKER)
        if not sep:
            _LOGGER.warning(
                "Source %s: certificate block %d has no END marker, dropping",
                source_id,
                index,
            )
            dropped += 1
            continue
        if (der := _decode_block(body)) is None:
            _LOGGER.warning(
                "Source %s: certificate block %d is not valid base64 DER, dropping",
                source_id,
                index,
            )
            dropped += 1
            continue
        results.append(CertificatePEM(der))
    if not results:
        raise MalformedPEM(
            source_id,
            f"no valid certificate blocks found ({dropped} malformed)",
        )
    _LOGGER.debug(
        "Source %s: parsed %d certificate(s), dropped %d",
        source_id,
        len(results),
        dropped,
    )
    return results
