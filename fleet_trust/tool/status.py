"""Fleet-trust status action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from pathlib import Path
import sys
from typing import Any, cast

from fleet_trust.reconciler import ComplianceTracker
from fleet_trust.store import FileStateStore

from . import common
from .format import JsonFormatter, PrintFormatter, YamlFormatter

_LOGGER = logging.getLogger(__name__)

EXIT_NOT_COMPLIANT = 2
COLUMNS = [
    "cluster_id",
    "state",
    "fingerprint_match",
    "consecutive_failures",
    "exhausted",
    "last_error",
]


class StatusAction:
    """Print the compliance of every target after the last pass."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "status",
                help="Print compliance of each target",
                description="Print the state recorded by the last completed pass.",
            ),
        )
        common.add_state_flags(args)
        args.add_argument(
            "--output",
            "-o",
            choices=["table", "yaml", "json"],
            default="table",
            help="Output format of the command",
        )
        args.add_argument(
            "--check",
            action="store_true",
            help="Exit with status 2 unless every target is compliant",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        state: Path,
        output: str,
        check: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        tracker = ComplianceTracker(await FileStateStore(state).load())
        entries = tracker.report()
        if output == "table":
            print(f"fingerprint: {tracker.fingerprint or '-'}")
            PrintFormatter(COLUMNS).print([entry.to_dict() for entry in entries])
        else:
            doc: dict[str, Any] = {
                "fingerprint": tracker.fingerprint,
                "compliant": tracker.all_compliant(),
                "targets": [entry.to_dict() for entry in entries],
            }
            if output == "yaml":
                YamlFormatter().print([doc])
            else:
                JsonFormatter().print(doc)
        if check and not tracker.all_compliant():
            sys.exit(EXIT_NOT_COMPLIANT)
