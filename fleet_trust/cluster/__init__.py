"""Access to the hub, the managed clusters, and the inventory listing them.

The reconciliation engine only depends on the abstract `ClusterInventory`
and `ClusterClient` interfaces. `KubectlInventory` and `KubectlClient` talk to
real clusters through `oc`; the in-memory implementations back dry runs and
tests.
"""

from .cluster import ClusterClient, ClusterInventory, ManagedCluster
from .in_memory import InMemoryClusterClient, InMemoryInventory
from .kubectl import InventoryConfig, KubectlClient, KubectlInventory

__all__ = [
    "ClusterClient",
    "ClusterInventory",
    "ManagedCluster",
    "InMemoryClusterClient",
    "InMemoryInventory",
    "InventoryConfig",
    "KubectlClient",
    "KubectlInventory",
]
