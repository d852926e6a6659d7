"""Fixtures for reconciliation tests."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from fleet_trust.cluster import InMemoryClusterClient, InMemoryInventory
from fleet_trust.config import ReconcilerConfig
from fleet_trust.reconciler import FleetReconciler
from fleet_trust.retry import CompliancePollConfig
from fleet_trust.store import InMemoryStateStore
from fleet_trust.transport import InMemoryTransport

ReconcilerFactory = Callable[..., FleetReconciler]


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


async def no_sleep(delay: float) -> None:
    """Skip waits between compliance checks."""


def fast_config(**kwargs) -> ReconcilerConfig:  # type: ignore[no-untyped-def]
    """Return a config that polls compliance twice without waiting."""
    kwargs.setdefault("compliance", CompliancePollConfig(attempts=2, interval=0))
    return ReconcilerConfig(**kwargs)


@pytest.fixture(name="transport")
def transport_fixture() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture(name="store")
def store_fixture() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="make_reconciler")
def make_reconciler_fixture(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    store: InMemoryStateStore,
    clock: FakeClock,
) -> ReconcilerFactory:
    """Return a function building a reconciler over the in-memory fleet."""

    def make(config: ReconcilerConfig | None = None) -> FleetReconciler:
        return FleetReconciler(
            hub=hub,
            inventory=inventory,
            transport=transport,
            store=store,
            config=config or fast_config(),
            clock=clock,
            sleep=no_sleep,
        )

    return make
