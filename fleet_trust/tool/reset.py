"""Fleet-trust reset action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from pathlib import Path
from typing import cast

from fleet_trust.exceptions import InputException
from fleet_trust.store import FileStateStore, FleetState, TargetState

from . import common

_LOGGER = logging.getLogger(__name__)


def reset_targets(state: FleetState, cluster_ids: list[str]) -> None:
    """Clear the failure history so the targets are retried on the next pass."""
    for cluster_id in cluster_ids:
        if (target := state.target(cluster_id)) is None:
            raise InputException(f"Target {cluster_id} is not tracked")
        target.state = TargetState.UNKNOWN
        target.consecutive_failures = 0
        target.exhausted = False
        target.last_error = None
        _LOGGER.info("Reset %s", cluster_id)


class ResetAction:
    """Reset targets that exhausted their retries."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "reset",
                help="Retry targets that gave up",
                description=(
                    "Clear the retry budget of targets so the next pass "
                    "applies the bundle to them again."
                ),
            ),
        )
        common.add_state_flags(args)
        args.add_argument("cluster", nargs="+", help="Target to reset, or 'hub'")
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        state: Path,
        cluster: list[str],
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        store = FileStateStore(state)
        fleet_state = await store.load()
        reset_targets(fleet_state, cluster)
        await store.save(fleet_state)
        print(f"Reset {len(cluster)} target(s)")
