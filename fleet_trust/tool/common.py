"""Flags and wiring shared by the fleet-trust actions."""

from argparse import ArgumentParser
import logging
from pathlib import Path

from fleet_trust.cluster import KubectlClient, KubectlInventory
from fleet_trust.config import ReconcilerConfig, load_config
from fleet_trust.reconciler import FleetReconciler
from fleet_trust.store import FileStateStore
from fleet_trust.transport import PolicyEngineTransport

_LOGGER = logging.getLogger(__name__)

DEFAULT_STATE_FILE = Path("fleet-trust-state.yaml")


def add_state_flags(args: ArgumentParser) -> None:
    """Add the flag selecting the state file."""
    args.add_argument(
        "--state",
        type=Path,
        default=DEFAULT_STATE_FILE,
        help="File holding per-target state between passes",
    )


def add_cluster_flags(args: ArgumentParser) -> None:
    """Add flags for reaching the hub."""
    args.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML configuration file, defaults are used when omitted",
    )
    args.add_argument(
        "--kubectl",
        default=None,
        help="The oc or kubectl binary, overrides the config file",
    )
    args.add_argument(
        "--kubeconfig",
        default=None,
        help="Kubeconfig of the hub, overrides the config file",
    )


async def reconciler_config(
    config: Path | None, kubectl: str | None, kubeconfig: str | None
) -> ReconcilerConfig:
    """Load the config file and apply the command line overrides."""
    result = await load_config(config)
    if kubectl:
        result.kubectl = kubectl
    if kubeconfig:
        result.kubeconfig = kubeconfig
    return result


def hub_client(config: ReconcilerConfig) -> KubectlClient:
    """Return a client for the hub."""
    return KubectlClient(
        kubectl=config.kubectl,
        kubeconfig=Path(config.kubeconfig) if config.kubeconfig else None,
    )


def build_reconciler(config: ReconcilerConfig, state: Path) -> FleetReconciler:
    """Return a reconciler driving real clusters through the hub."""
    hub = hub_client(config)
    return FleetReconciler(
        hub=hub,
        inventory=KubectlInventory(hub, config.inventory),
        transport=PolicyEngineTransport(hub, config.policy),
        store=FileStateStore(state),
        config=config,
    )
