"""Fleet-trust reconcile action."""

import asyncio
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from pathlib import Path
import signal
import sys
from typing import cast

from fleet_trust.reconciler import ReconciliationRun

from . import common
from .format import PrintFormatter

_LOGGER = logging.getLogger(__name__)

EXIT_DEGRADED = 2


def print_run(run: ReconciliationRun) -> None:
    """Print the outcome of each target in a pass."""
    results = [
        {
            "target": outcome.cluster_id,
            "state": outcome.state,
            "applied": outcome.applied,
            "skipped": outcome.skipped,
            "error": outcome.error,
        }
        for outcome in run.outcomes.values()
    ]
    PrintFormatter().print(results)


class ReconcileAction:
    """Reconcile the trust bundle across the fleet."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "reconcile",
                help="Run a reconciliation pass",
                description=(
                    "Merge CA material from the hub and managed clusters and "
                    "distribute the bundle to every cluster."
                ),
            ),
        )
        common.add_cluster_flags(args)
        common.add_state_flags(args)
        args.add_argument(
            "--interval",
            type=float,
            default=None,
            help="Keep running, starting a pass every INTERVAL seconds",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: Path | None,
        kubectl: str | None,
        kubeconfig: str | None,
        state: Path,
        interval: float | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        reconciler = common.build_reconciler(
            await common.reconciler_config(config, kubectl, kubeconfig), state
        )
        if interval is None:
            run: ReconciliationRun | None = await reconciler.run_once()
        else:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, reconciler.request_stop)
            run = await reconciler.run_forever(interval)
        if run is None:
            return
        print_run(run)
        if run.error is not None:
            print(f"fleet-trust: {run.error}", file=sys.stderr)
            sys.exit(EXIT_DEGRADED)
        if exhausted := run.exhausted:
            print(
                f"fleet-trust: retries exhausted for {', '.join(exhausted)}",
                file=sys.stderr,
            )
            sys.exit(EXIT_DEGRADED)
