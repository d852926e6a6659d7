"""Fleet-trust describe action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from pathlib import Path
from typing import cast

import aiofiles
import yaml

from fleet_trust.bundle import TrustBundle, merge, merge_results
from fleet_trust.cluster import KubectlInventory
from fleet_trust.descriptor import describe
from fleet_trust.exceptions import InputException
from fleet_trust.pem import parse_certificates
from fleet_trust.source import SourceReader, build_sources
from fleet_trust.transport.policy import policy_documents

from . import common

_LOGGER = logging.getLogger(__name__)


async def read_bundle_file(path: Path) -> TrustBundle:
    """Build a bundle from a local file of concatenated PEM blocks."""
    try:
        async with aiofiles.open(str(path)) as bundle_file:
            content = await bundle_file.read()
    except OSError as err:
        raise InputException(f"Unable to read bundle file {path}: {err}") from err
    return merge({str(path): parse_certificates(content, str(path))})


class DescribeAction:
    """Print the manifest that would be distributed."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "describe",
                help="Print the distribution manifest",
                description=(
                    "Print the objects installed on managed clusters for the "
                    "current bundle, without writing anything."
                ),
            ),
        )
        common.add_cluster_flags(args)
        args.add_argument(
            "--bundle-file",
            type=Path,
            default=None,
            help="Describe the certificates in a local PEM file instead of reading the fleet",
        )
        args.add_argument(
            "--policy-for",
            metavar="CLUSTER",
            default=None,
            help="Print the policy objects written on the hub for a cluster",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: Path | None,
        kubectl: str | None,
        kubeconfig: str | None,
        bundle_file: Path | None,
        policy_for: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        reconciler_config = await common.reconciler_config(config, kubectl, kubeconfig)
        if bundle_file is not None:
            bundle = await read_bundle_file(bundle_file)
        else:
            hub = common.hub_client(reconciler_config)
            inventory = KubectlInventory(hub, reconciler_config.inventory)
            reader = SourceReader(hub, inventory, reconciler_config.sources)
            results = await reader.read_all(
                build_sources(await inventory.list_clusters())
            )
            bundle = merge_results(results)
        _LOGGER.info("Describing %s", bundle)
        manifest = describe(bundle, reconciler_config.target)
        if policy_for is None:
            print(manifest.yaml(), end="")
            return
        docs = policy_documents(manifest, policy_for, reconciler_config.policy)
        print(yaml.dump_all(docs, sort_keys=True, explicit_start=True), end="")
