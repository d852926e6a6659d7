"""The fleet reconciliation loop.

A pass reads every source, merges the bundle and then walks each target
through its state machine:

```
Unknown -> Pending -> Applied -> Compliant
              |          |
              +----------+--> Failing -> Pending (after backoff)
```

Targets are processed concurrently by a bounded pool of workers. Each worker
owns the record of the target it handles, and the bundle shared between them
is immutable, so no locking is needed. A failing target only affects its own
record.
"""

import asyncio
from collections.abc import Awaitable, Callable
import contextlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging

from fleet_trust.bundle import TrustBundle, merge_results
from fleet_trust.cluster import ClusterClient, ClusterInventory, ManagedCluster
from fleet_trust.config import ReconcilerConfig
from fleet_trust.context import trace_context
from fleet_trust.descriptor import describe
from fleet_trust.exceptions import (
    ApplyTimeout,
    FleetTrustException,
    NoSourcesAvailable,
)
from fleet_trust.hub import HUB_TARGET_ID, LocalTrustConfigurator
from fleet_trust.source import SourceReader, SourceReadResult, build_sources
from fleet_trust.store import (
    DistributionTarget,
    FleetState,
    StateStore,
    TargetState,
)
from fleet_trust.transport import PolicyTransport

from .compliance import ComplianceTracker
from .targets import DesiredState, Distributor, FleetDistributor, HubDistributor

__all__ = [
    "FleetReconciler",
    "ReconciliationRun",
    "TargetOutcome",
]

_LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TargetOutcome:
    """What happened to one target during a pass."""

    cluster_id: str
    state: TargetState
    applied: bool = False
    """Whether the bundle was handed to the target in this pass."""

    skipped: str | None = None
    """Why no attempt was made, if none was."""

    error: str | None = None


@dataclass
class ReconciliationRun:
    """A record of one pass, kept only for logging and the caller."""

    started_at: datetime
    finished_at: datetime | None = None
    bundle: TrustBundle | None = None
    source_results: list[SourceReadResult] = field(default_factory=list)
    targets: list[DistributionTarget] = field(default_factory=list)
    outcomes: dict[str, TargetOutcome] = field(default_factory=dict)
    error: FleetTrustException | None = None
    """Set when the pass could not produce a bundle."""

    @property
    def exhausted(self) -> list[str]:
        """Targets that have given up and need operator attention."""
        return [target.cluster_id for target in self.targets if target.exhausted]

    @property
    def applied(self) -> list[str]:
        """Targets the bundle was handed to in this pass."""
        return [
            cluster_id
            for cluster_id, outcome in self.outcomes.items()
            if outcome.applied
        ]

    def __str__(self) -> str:
        if self.error:
            return f"ReconciliationRun(error={self.error})"
        states = [str(outcome.state) for outcome in self.outcomes.values()]
        summary = ", ".join(
            f"{states.count(state)} {state}" for state in sorted(set(states))
        )
        return f"ReconciliationRun({self.bundle}, {summary})"


class FleetReconciler:
    """Drives the hub and every managed cluster to the canonical bundle."""

    def __init__(
        self,
        hub: ClusterClient,
        inventory: ClusterInventory,
        transport: PolicyTransport,
        store: StateStore,
        config: ReconcilerConfig | None = None,
        tracker: ComplianceTracker | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize FleetReconciler."""
        self._inventory = inventory
        self._transport = transport
        self._store = store
        self._config = config or ReconcilerConfig()
        self._reader = SourceReader(hub, inventory, self._config.sources)
        self._hub = HubDistributor(LocalTrustConfigurator(hub, self._config.target))
        self.tracker = tracker or ComplianceTracker()
        self._clock = clock
        self._sleep = sleep
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        """Stop before the next apply or compliance check.

        An apply already in flight runs to completion or to its timeout.
        """
        _LOGGER.info("Stop requested")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        """Return True once a stop was requested."""
        return self._stop.is_set()

    async def run_forever(self, interval: float) -> ReconciliationRun | None:
        """Run passes until stopped, waiting `interval` seconds between them."""
        run = None
        while not self.stopping:
            run = await self.run_once()
            _LOGGER.info("%s", run)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), interval)
        return run

    async def run_once(self) -> ReconciliationRun:
        """Run one full pass over all sources and targets."""
        run = ReconciliationRun(started_at=self._clock())
        with trace_context("pass"):
            state = await self._store.load()
            try:
                clusters = await self._inventory.list_clusters()
            except FleetTrustException as err:
                _LOGGER.error("Unable to list managed clusters: %s", err)
                return self._abort(run, state, err)
            run.source_results = await self._reader.read_all(build_sources(clusters))
            try:
                bundle = merge_results(run.source_results)
            except NoSourcesAvailable as err:
                _LOGGER.error("Skipping all writes: %s", err)
                return self._abort(run, state, err)

            run.bundle = bundle
            if state.fingerprint != bundle.fingerprint:
                _LOGGER.info(
                    "Canonical bundle changed from %s to %s",
                    state.fingerprint,
                    bundle.fingerprint,
                )
                self._reset_budgets(state)
            desired = DesiredState(bundle, describe(bundle, self._config.target))

            targets = await self._sync_targets(state, clusters)
            semaphore = asyncio.Semaphore(self._config.max_workers)
            outcomes = await asyncio.gather(
                *(self._reconcile(target, desired, semaphore) for target in targets)
            )
            run.targets = targets
            run.outcomes = {outcome.cluster_id: outcome for outcome in outcomes}

            new_state = FleetState(fingerprint=bundle.fingerprint, targets=targets)
            await self._store.save(new_state)
            self.tracker.publish(new_state)
        run.finished_at = self._clock()
        return run

    def _abort(
        self, run: ReconciliationRun, state: FleetState, err: FleetTrustException
    ) -> ReconciliationRun:
        """End a pass without writing anything, keeping the last good state."""
        run.error = err
        run.targets = state.targets
        self.tracker.publish(state)
        run.finished_at = self._clock()
        return run

    @staticmethod
    def _reset_budgets(state: FleetState) -> None:
        """Give every target a fresh retry budget for a new bundle."""
        for target in state.targets:
            if target.exhausted:
                _LOGGER.info("Resetting exhausted retry budget of %s", target.cluster_id)
            target.exhausted = False
            target.consecutive_failures = 0

    async def _sync_targets(
        self, state: FleetState, clusters: list[ManagedCluster]
    ) -> list[DistributionTarget]:
        """Return the targets of this pass, hub first then inventory order."""
        known = {target.cluster_id: target for target in state.targets}
        targets = []
        for cluster_id in [HUB_TARGET_ID] + [cluster.name for cluster in clusters]:
            if (target := known.pop(cluster_id, None)) is None:
                _LOGGER.info("New target %s", cluster_id)
                target = DistributionTarget(cluster_id=cluster_id)
            targets.append(target)
        for cluster_id in sorted(known):
            _LOGGER.info("Target %s left the inventory, removing it", cluster_id)
            try:
                await self._transport.withdraw(cluster_id)
            except FleetTrustException as err:
                _LOGGER.warning(
                    "Could not withdraw policy for %s: %s", cluster_id, err
                )
        return targets

    def _distributor(self, cluster_id: str) -> Distributor:
        if cluster_id == HUB_TARGET_ID:
            return self._hub
        return FleetDistributor(self._transport, cluster_id)

    async def _reconcile(
        self,
        target: DistributionTarget,
        desired: DesiredState,
        semaphore: asyncio.Semaphore,
    ) -> TargetOutcome:
        async with semaphore:
            with trace_context(target.cluster_id):
                outcome = TargetOutcome(target.cluster_id, target.state)
                try:
                    await self._step(target, desired, outcome)
                except FleetTrustException as err:
                    self._record_failure(target, err)
                    outcome.error = str(err)
                outcome.state = target.state
                return outcome

    async def _step(
        self, target: DistributionTarget, desired: DesiredState, outcome: TargetOutcome
    ) -> None:
        """Advance one target as far as it can go in this pass."""
        fingerprint = desired.fingerprint
        distributor = self._distributor(target.cluster_id)

        if target.state == TargetState.UNKNOWN:
            target.state = TargetState.PENDING
        elif target.state == TargetState.COMPLIANT:
            if target.last_applied_fingerprint != fingerprint:
                target.state = TargetState.PENDING
            elif not self._config.verify_compliant:
                outcome.skipped = "in sync"
                return
            else:
                target.last_attempt = self._clock()
                observed = await distributor.observed_fingerprint()
                target.observed_fingerprint = observed
                if observed == fingerprint:
                    outcome.skipped = "in sync"
                    return
                _LOGGER.warning(
                    "%s drifted to %s, reapplying", target.cluster_id, observed
                )
                target.state = TargetState.PENDING
        elif target.state == TargetState.FAILING:
            if target.exhausted:
                outcome.skipped = "retries exhausted"
                return
            if not self._config.retry.ready(
                target.consecutive_failures, target.last_attempt, self._clock()
            ):
                outcome.skipped = "backoff"
                return
            target.state = TargetState.PENDING
        elif target.last_applied_fingerprint != fingerprint:
            target.state = TargetState.PENDING

        if self.stopping:
            outcome.skipped = "stopped"
            return
        target.last_attempt = self._clock()
        if target.state == TargetState.PENDING:
            _LOGGER.debug(
                "Applying %s to %s (attempt %d)",
                fingerprint,
                target.cluster_id,
                target.consecutive_failures + 1,
            )
            await asyncio.shield(distributor.apply(desired))
            target.state = TargetState.APPLIED
            target.last_applied_fingerprint = fingerprint
            outcome.applied = True

        await self._await_compliance(target, distributor, fingerprint)

    async def _await_compliance(
        self, target: DistributionTarget, distributor: Distributor, fingerprint: str
    ) -> None:
        """Poll until the target reports the fingerprint installed."""
        polls = self._config.compliance
        for check in range(1, polls.attempts + 1):
            if self.stopping:
                return
            target.observed_fingerprint = await distributor.observed_fingerprint()
            if target.observed_fingerprint == fingerprint:
                target.state = TargetState.COMPLIANT
                target.consecutive_failures = 0
                target.last_error = None
                _LOGGER.info("%s is compliant with %s", target.cluster_id, fingerprint)
                return
            _LOGGER.debug(
                "%s not yet compliant (check %d of %d)",
                target.cluster_id,
                check,
                polls.attempts,
            )
            if check < polls.attempts:
                await self._sleep(polls.interval)
        raise ApplyTimeout(
            target.cluster_id,
            f"not compliant after {polls.attempts} checks, "
            f"reports {target.observed_fingerprint}",
        )

    def _record_failure(
        self, target: DistributionTarget, err: FleetTrustException
    ) -> None:
        target.state = TargetState.FAILING
        target.consecutive_failures += 1
        target.last_error = str(err)
        if target.last_attempt is None:
            target.last_attempt = self._clock()
        retry = self._config.retry
        if retry.exhausted(target.consecutive_failures):
            target.exhausted = True
            _LOGGER.error(
                "%s failed %d time(s) and will not be retried until the bundle "
                "changes or it is reset, operator attention required: %s",
                target.cluster_id,
                target.consecutive_failures,
                err,
            )
            return
        _LOGGER.error(
            "%s failed (attempt %d of %d), retrying in %ss: %s",
            target.cluster_id,
            target.consecutive_failures,
            retry.max_attempts,
            retry.delay(target.consecutive_failures),
            err,
        )
