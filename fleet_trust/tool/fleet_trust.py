"""Command line tool for distributing a CA trust bundle across a fleet."""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Any

import yaml

from fleet_trust.exceptions import FleetTrustException
from . import describe, reconcile, reset, status

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for reconciling fleet trust bundles.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    reconcile.ReconcileAction.register(subparsers)
    status.StatusAction.register(subparsers)
    describe.DescribeAction.register(subparsers)
    reset.ResetAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Fleet-trust command line tool main entry point."""

    def str_presenter(dumper: yaml.Dumper, data: Any) -> Any:
        """Represent multi-line yaml strings as you'd expect.

        See https://github.com/yaml/pyyaml/issues/240
        """
        if data.count("\n") > 0:
            return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
        return dumper.represent_str(data)

    yaml.add_representer(str, str_presenter)

    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except FleetTrustException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("fleet-trust error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
