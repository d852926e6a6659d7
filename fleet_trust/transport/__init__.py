"""Delivery of distribution manifests to managed clusters.

The reconciliation loop hands each cluster's manifest to a `PolicyTransport`
and then polls it for a compliance signal rather than assuming the manifest
was applied synchronously.
"""

from .in_memory import InMemoryTransport
from .policy import PolicyConfig, PolicyEngineTransport
from .transport import ComplianceSignal, PolicyTransport

__all__ = [
    "ComplianceSignal",
    "PolicyTransport",
    "PolicyConfig",
    "PolicyEngineTransport",
    "InMemoryTransport",
]
