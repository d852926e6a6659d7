"""Tests for the fleet reconciliation loop."""

import asyncio
from typing import Any

from fleet_trust.bundle import compute_fingerprint
from fleet_trust.cluster import InMemoryClusterClient, InMemoryInventory
from fleet_trust.descriptor import DistributionManifest
from fleet_trust.exceptions import InputException, NoSourcesAvailable
from fleet_trust.manifest import FINGERPRINT_ANNOTATION, NamedResource
from fleet_trust.pem import CertificatePEM
from fleet_trust.reconciler import FleetReconciler
from fleet_trust.retry import RetryPolicy
from fleet_trust.store import (
    DistributionTarget,
    FleetState,
    InMemoryStateStore,
    TargetState,
)
from fleet_trust.transport import InMemoryTransport

from tests.conftest import SeedFn, make_certificate

from .conftest import FakeClock, ReconcilerFactory, fast_config

HUB_BUNDLE = NamedResource("ConfigMap", "openshift-config", "fleet-trust-ca-bundle")


def states(store_state: FleetState) -> dict[str, TargetState]:
    return {target.cluster_id: target.state for target in store_state.targets}


async def test_merge_and_distribute(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    store: InMemoryStateStore,
    seed_certificates: SeedFn,
    make_reconciler: ReconcilerFactory,
    cert_a: CertificatePEM,
    cert_b: CertificatePEM,
    cert_c: CertificatePEM,
) -> None:
    """Test a pass with one source down still reaches every target."""
    seed_certificates(inventory.add_cluster("managed-1"), [cert_b, cert_c])
    managed_2 = inventory.add_cluster("managed-2", available=False)

    run = await make_reconciler().run_once()

    assert run.error is None
    assert run.bundle is not None
    assert run.bundle.certificates == (cert_a, cert_b, cert_c)
    expected = compute_fingerprint([cert_a, cert_b, cert_c])
    assert run.bundle.fingerprint == expected
    assert [result.ok for result in run.source_results] == [True, True, False]

    assert {cluster: m.fingerprint for cluster, m in transport.distributed.items()} == {
        "managed-1": expected,
        "managed-2": expected,
    }
    hub_doc = hub.objects[HUB_BUNDLE]
    assert hub_doc["metadata"]["annotations"][FINGERPRINT_ANNOTATION] == expected
    assert sorted(run.applied) == ["hub", "managed-1", "managed-2"]
    assert {outcome.state for outcome in run.outcomes.values()} == {
        TargetState.COMPLIANT
    }

    saved = await store.load()
    assert saved.fingerprint == expected
    assert states(saved) == {
        "hub": TargetState.COMPLIANT,
        "managed-1": TargetState.COMPLIANT,
        "managed-2": TargetState.COMPLIANT,
    }

    # The unreachable cluster is read again once it is back
    cert_d = make_certificate(4)
    inventory.available["managed-2"] = True
    seed_certificates(managed_2, [cert_d])
    run = await make_reconciler().run_once()
    assert run.bundle is not None
    assert run.bundle.certificates == (cert_a, cert_b, cert_c, cert_d)
    assert sorted(run.applied) == ["hub", "managed-1", "managed-2"]
    assert transport.distributed["managed-2"].fingerprint == run.bundle.fingerprint


async def test_unchanged_bundle_applies_nothing(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    seed_certificates: SeedFn,
    make_reconciler: ReconcilerFactory,
    cert_c: CertificatePEM,
) -> None:
    """Test compliant targets are left alone when the bundle is unchanged."""
    seed_certificates(inventory.add_cluster("managed-1"), [cert_c])
    reconciler = make_reconciler()
    await reconciler.run_once()
    hub_writes = list(hub.writes)
    calls = list(transport.calls)

    run = await reconciler.run_once()

    assert run.applied == []
    assert hub.writes == hub_writes
    assert transport.calls == calls
    assert {outcome.skipped for outcome in run.outcomes.values()} == {"in sync"}


async def test_new_cluster_only_applies_to_it(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    seed_certificates: SeedFn,
    make_reconciler: ReconcilerFactory,
    cert_a: CertificatePEM,
) -> None:
    """Test a cluster joining with known certificates doesn't touch the others."""
    seed_certificates(inventory.add_cluster("managed-1"), [cert_a])
    reconciler = make_reconciler()
    first = await reconciler.run_once()

    seed_certificates(inventory.add_cluster("managed-2"), [cert_a])
    second = await reconciler.run_once()

    assert first.bundle is not None and second.bundle is not None
    assert second.bundle.fingerprint == first.bundle.fingerprint
    assert second.applied == ["managed-2"]
    assert transport.calls == ["managed-1", "managed-2"]


async def test_partial_failure_isolation(
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    make_reconciler: ReconcilerFactory,
) -> None:
    """Test a failing target does not hold back the others."""
    for name in ("managed-1", "managed-2", "managed-3"):
        inventory.add_cluster(name, available=False)
    transport.rejected.add("managed-2")

    run = await make_reconciler().run_once()

    assert run.outcomes["managed-1"].state == TargetState.COMPLIANT
    assert run.outcomes["managed-3"].state == TargetState.COMPLIANT
    failed = run.outcomes["managed-2"]
    assert failed.state == TargetState.FAILING
    assert failed.error is not None and "rejected" in failed.error
    (target,) = [t for t in run.targets if t.cluster_id == "managed-2"]
    assert target.consecutive_failures == 1
    assert target.last_error == failed.error
    assert target.last_applied_fingerprint is None


async def test_no_sources_preserves_state(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    store: InMemoryStateStore,
    make_reconciler: ReconcilerFactory,
    cert_c: CertificatePEM,
    seed_certificates: SeedFn,
) -> None:
    """Test a total outage writes nothing and keeps the last good bundle."""
    seed_certificates(inventory.add_cluster("managed-1"), [cert_c])
    reconciler = make_reconciler()
    await reconciler.run_once()
    before = await store.load()
    hub_doc = dict(hub.objects[HUB_BUNDLE])
    hub_writes = list(hub.writes)
    saves = store.saves

    hub.reachable = False
    inventory.credential_failures.add("managed-1")
    run = await reconciler.run_once()

    assert isinstance(run.error, NoSourcesAvailable)
    assert run.bundle is None
    assert run.outcomes == {}
    assert hub.writes == hub_writes
    assert hub.objects[HUB_BUNDLE] == hub_doc
    assert transport.calls == ["managed-1"]
    assert store.saves == saves
    assert await store.load() == before
    assert reconciler.tracker.all_compliant()


async def test_failing_target_backs_off(
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    clock: FakeClock,
    make_reconciler: ReconcilerFactory,
) -> None:
    """Test a failing target is retried only after its backoff delay."""
    inventory.add_cluster("managed-1", available=False)
    transport.rejected.add("managed-1")
    reconciler = make_reconciler(
        fast_config(retry=RetryPolicy(interval=60, multiplier=2.0))
    )

    await reconciler.run_once()
    assert transport.calls == ["managed-1"]

    clock.advance(30)
    run = await reconciler.run_once()
    assert run.outcomes["managed-1"].skipped == "backoff"
    assert transport.calls == ["managed-1"]

    clock.advance(31)
    run = await reconciler.run_once()
    assert transport.calls == ["managed-1", "managed-1"]
    (target,) = [t for t in run.targets if t.cluster_id == "managed-1"]
    assert target.consecutive_failures == 2

    # The second failure doubles the delay
    clock.advance(61)
    run = await reconciler.run_once()
    assert run.outcomes["managed-1"].skipped == "backoff"

    transport.rejected.clear()
    clock.advance(60)
    run = await reconciler.run_once()
    assert run.outcomes["managed-1"].state == TargetState.COMPLIANT
    (target,) = [t for t in run.targets if t.cluster_id == "managed-1"]
    assert target.consecutive_failures == 0
    assert target.last_error is None


async def test_exhausted_target(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    seed_certificates: SeedFn,
    make_reconciler: ReconcilerFactory,
    cert_a: CertificatePEM,
) -> None:
    """Test a target stops being retried once its budget is spent."""
    inventory.add_cluster("managed-1", available=False)
    transport.rejected.add("managed-1")
    reconciler = make_reconciler(
        fast_config(retry=RetryPolicy(max_attempts=2, interval=0))
    )

    await reconciler.run_once()
    run = await reconciler.run_once()
    assert run.exhausted == ["managed-1"]
    assert [entry.cluster_id for entry in reconciler.tracker.exhausted()] == [
        "managed-1"
    ]

    run = await reconciler.run_once()
    assert run.outcomes["managed-1"].skipped == "retries exhausted"
    assert transport.calls == ["managed-1", "managed-1"]

    # A new bundle gives the target a fresh budget
    transport.rejected.clear()
    seed_certificates(hub, [cert_a, make_certificate(9)])
    run = await reconciler.run_once()
    assert run.exhausted == []
    assert run.outcomes["managed-1"].state == TargetState.COMPLIANT


async def test_removed_cluster_is_withdrawn(
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    store: InMemoryStateStore,
    make_reconciler: ReconcilerFactory,
) -> None:
    """Test a decommissioned cluster loses its record and its policy."""
    inventory.add_cluster("managed-1", available=False)
    inventory.add_cluster("managed-2", available=False)
    reconciler = make_reconciler()
    await reconciler.run_once()

    inventory.remove_cluster("managed-2")
    run = await reconciler.run_once()

    assert list(run.outcomes) == ["hub", "managed-1"]
    assert transport.withdrawn == ["managed-2"]
    assert (await store.load()).target("managed-2") is None


async def test_compliance_never_confirmed(
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    make_reconciler: ReconcilerFactory,
) -> None:
    """Test an apply that never shows up as compliant is a failure."""
    inventory.add_cluster("managed-1", available=False)
    transport.non_compliant.add("managed-1")

    run = await make_reconciler().run_once()

    outcome = run.outcomes["managed-1"]
    assert outcome.applied
    assert outcome.state == TargetState.FAILING
    assert outcome.error is not None
    assert "not compliant after 2 checks" in outcome.error
    (target,) = [t for t in run.targets if t.cluster_id == "managed-1"]
    assert target.last_applied_fingerprint == run.bundle.fingerprint  # type: ignore[union-attr]


async def test_verify_compliant_detects_drift(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    make_reconciler: ReconcilerFactory,
) -> None:
    """Test compliant targets are re-checked and repaired when asked to."""
    inventory.add_cluster("managed-1", available=False)
    reconciler = make_reconciler(fast_config(verify_compliant=True))
    await reconciler.run_once()

    run = await reconciler.run_once()
    assert run.applied == []

    del transport.distributed["managed-1"]
    hub.objects[HUB_BUNDLE]["metadata"]["annotations"][FINGERPRINT_ANNOTATION] = "x"
    run = await reconciler.run_once()
    assert sorted(run.applied) == ["hub", "managed-1"]
    assert reconciler.tracker.all_compliant()


async def test_hub_partial_apply(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    make_reconciler: ReconcilerFactory,
) -> None:
    """Test a hub that only took half the install is failing."""
    inventory.add_cluster("managed-1", available=False)
    hub.reject_kinds.add("Proxy")

    run = await make_reconciler().run_once()

    assert run.outcomes["hub"].state == TargetState.FAILING
    assert "proxy" in (run.outcomes["hub"].error or "")
    assert run.outcomes["managed-1"].state == TargetState.COMPLIANT


async def test_stop_before_apply(
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    store: InMemoryStateStore,
    make_reconciler: ReconcilerFactory,
) -> None:
    """Test a stop request prevents further applies."""
    inventory.add_cluster("managed-1", available=False)
    reconciler = make_reconciler()
    reconciler.request_stop()

    run = await reconciler.run_once()

    assert transport.calls == []
    assert {outcome.skipped for outcome in run.outcomes.values()} == {"stopped"}
    assert states(await store.load()) == {
        "hub": TargetState.PENDING,
        "managed-1": TargetState.PENDING,
    }


class SlowTransport(InMemoryTransport):
    """Tracks how many distributions are in flight at once."""

    def __init__(self) -> None:
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0

    async def distribute(self, manifest: DistributionManifest, cluster: str) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        await super().distribute(manifest, cluster)


async def test_worker_pool_is_bounded(
    hub: InMemoryClusterClient, inventory: InMemoryInventory
) -> None:
    """Test no more than max_workers targets are processed at once."""
    for i in range(6):
        inventory.add_cluster(f"managed-{i}", available=False)
    transport = SlowTransport()
    reconciler = FleetReconciler(
        hub=hub,
        inventory=inventory,
        transport=transport,
        store=InMemoryStateStore(),
        config=fast_config(max_workers=2),
    )
    run = await reconciler.run_once()
    assert len(run.applied) == 7
    assert transport.max_in_flight == 2


async def test_run_forever(
    inventory: InMemoryInventory, make_reconciler: ReconcilerFactory
) -> None:
    """Test passes repeat until a stop is requested."""
    inventory.add_cluster("managed-1", available=False)
    reconciler = make_reconciler()
    task = asyncio.create_task(reconciler.run_forever(0.01))
    await asyncio.sleep(0.05)
    reconciler.request_stop()
    run = await asyncio.wait_for(task, 1)
    assert run is not None
    assert reconciler.tracker.all_compliant()


async def test_existing_state_is_resumed(
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    make_reconciler: ReconcilerFactory,
    store: InMemoryStateStore,
) -> None:
    """Test an applied target from an earlier pass is only polled."""
    inventory.add_cluster("managed-1", available=False)
    reconciler = make_reconciler()
    first = await reconciler.run_once()
    assert first.bundle is not None

    state = await store.load()
    target = state.target("managed-1")
    assert isinstance(target, DistributionTarget)
    target.state = TargetState.APPLIED
    await store.save(state)

    run = await reconciler.run_once()
    assert run.outcomes["managed-1"].state == TargetState.COMPLIANT
    assert not run.outcomes["managed-1"].applied
    assert transport.calls == ["managed-1"]


async def test_inventory_unavailable(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    store: InMemoryStateStore,
    make_reconciler: ReconcilerFactory,
) -> None:
    """Test a pass that can't list the fleet writes nothing."""
    inventory.add_cluster("managed-1")
    reconciler = make_reconciler()
    await reconciler.run_once()
    saves = store.saves
    calls = list(transport.calls)
    hub_writes = list(hub.writes)

    inventory.reachable = False
    run = await reconciler.run_once()

    assert run.error is not None
    assert "unreachable" in str(run.error)
    assert run.outcomes == {}
    assert transport.calls == calls
    assert hub.writes == hub_writes
    assert store.saves == saves
    assert {target.cluster_id for target in run.targets} == {"hub", "managed-1"}


class GarbledClient(InMemoryClusterClient):
    """A cluster whose API output can't be decoded."""

    async def get(self, resource: NamedResource) -> dict[str, Any] | None:
        raise InputException(f"Invalid json output for {resource}")


async def test_undecodable_source_is_isolated(
    inventory: InMemoryInventory,
    transport: InMemoryTransport,
    store: InMemoryStateStore,
    seed_certificates: SeedFn,
    make_reconciler: ReconcilerFactory,
    cert_a: CertificatePEM,
    cert_b: CertificatePEM,
    cert_c: CertificatePEM,
) -> None:
    """Test a source returning garbage only drops that source from the pass."""
    seed_certificates(inventory.add_cluster("managed-1"), [cert_b, cert_c])
    inventory.add_cluster("managed-2")
    inventory.clusters["managed-2"] = GarbledClient("managed-2")

    run = await make_reconciler().run_once()

    assert run.error is None
    assert [result.ok for result in run.source_results] == [True, True, False]
    assert "Invalid json output" in str(run.source_results[2].error)
    assert run.bundle is not None
    assert run.bundle.fingerprint == compute_fingerprint([cert_a, cert_b, cert_c])
    assert sorted(transport.distributed) == ["managed-1", "managed-2"]
    assert store.saves == 1


async def test_failed_drift_check_backs_off(
    hub: InMemoryClusterClient,
    inventory: InMemoryInventory,
    clock: FakeClock,
    seed_certificates: SeedFn,
    make_reconciler: ReconcilerFactory,
    cert_a: CertificatePEM,
    cert_b: CertificatePEM,
) -> None:
    """Test a target whose drift check fails waits out its backoff."""
    seed_certificates(inventory.add_cluster("managed-1"), [cert_a, cert_b])
    reconciler = make_reconciler(
        fast_config(
            verify_compliant=True, retry=RetryPolicy(interval=60, multiplier=2.0)
        )
    )
    run = await reconciler.run_once()
    assert run.outcomes["hub"].state == TargetState.COMPLIANT

    clock.advance(1000)
    hub.reachable = False
    run = await reconciler.run_once()
    assert run.bundle is not None
    assert run.outcomes["hub"].state == TargetState.FAILING
    assert run.outcomes["hub"].error

    clock.advance(30)
    run = await reconciler.run_once()
    assert run.outcomes["hub"].skipped == "backoff"
    (target,) = [t for t in run.targets if t.cluster_id == "hub"]
    assert target.consecutive_failures == 1


async def test_saved_target_order(
    inventory: InMemoryInventory,
    store: InMemoryStateStore,
    make_reconciler: ReconcilerFactory,
) -> None:
    """Test targets are saved hub first, then in inventory order."""
    inventory.add_cluster("managed-b", available=False)
    inventory.add_cluster("managed-a", available=False)
    await make_reconciler().run_once()
    state = await store.load()
    assert [target.cluster_id for target in state.targets] == [
        "hub",
        "managed-b",
        "managed-a",
    ]
