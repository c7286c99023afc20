from __future__ import annotations

from typing import TYPE_CHECKING

from infra_provisioner.engine.types import Action
from infra_provisioner.resources import ResourceSpec

if TYPE_CHECKING:
    from collections.abc import Callable

    from infra_provisioner.engine import ProvisioningEngine
    from infra_provisioner.providers import InMemoryCloud

    EngineFactory = Callable[..., ProvisioningEngine]
    TopologyFactory = Callable[..., list[ResourceSpec]]


def test_no_drift_after_apply(make_engine: EngineFactory, make_topology: TopologyFactory) -> None:
    engine = make_engine()
    engine.apply(make_topology())

    assert engine.drift() == []


def test_vanished_object_is_reported_as_delete(
    cloud: InMemoryCloud, make_engine: EngineFactory, make_topology: TopologyFactory
) -> None:
    engine = make_engine()
    engine.apply(make_topology())
    serial = engine.snapshot().serial
    cloud.vanish("addon.x")

    changes = engine.drift()

    assert [(c.address, c.action) for c in changes] == [("addon.x", Action.DELETE)]
    assert changes[0].prior is not None
    assert changes[0].prior["mode"] == "default"
    # drift never writes state
    assert engine.snapshot().serial == serial


def test_refresh_drops_vanished_entries_and_replans_create(
    cloud: InMemoryCloud, make_engine: EngineFactory, make_topology: TopologyFactory
) -> None:
    engine = make_engine()
    engine.apply(make_topology())
    cloud.vanish("addon.x")

    engine.refresh(persist=True)

    assert "addon.x" not in engine.snapshot().resources
    plan = engine.plan(make_topology())
    assert plan.get("addon.x") is not None
    assert plan.get("addon.x").action == Action.CREATE


def test_attribute_drift_is_reported_and_persisted(
    cloud: InMemoryCloud, make_engine: EngineFactory, make_topology: TopologyFactory
) -> None:
    engine = make_engine()
    engine.apply(make_topology())
    network = cloud.find("network.main")
    assert network is not None
    cloud.modify(network.external_id, "network", {"cidr": "192.168.0.0/16", "tier": "gold"})

    changes = engine.refresh(persist=True)

    assert len(changes) == 1
    assert changes[0].address == "network.main"
    assert changes[0].action == Action.UPDATE
    # Keys the config never set are not tracked.
    assert changes[0].diff == {"cidr": {"from": "10.0.0.0/16", "to": "192.168.0.0/16"}}
    assert engine.snapshot().resources["network.main"].attributes == {"cidr": "192.168.0.0/16"}

    # The next plan brings the object back in line with the config.
    plan = engine.plan(make_topology())
    assert plan.get("network.main").action == Action.UPDATE


def test_refresh_picks_up_outputs_reported_late(
    cloud: InMemoryCloud, make_engine: EngineFactory
) -> None:
    engine = make_engine(
        {"cluster": {"ready_after": 1, "deferred_outputs": {"endpoint": "https://{id}"}}}
    )
    engine.apply([ResourceSpec(kind="cluster", name="main", attributes={"version": "1.29"})])
    obj = cloud.find("cluster.main")
    assert obj is not None
    external_id = obj.external_id

    changes = engine.refresh(persist=True)

    assert [c.address for c in changes] == ["cluster.main"]
    assert changes[0].diff == {
        "outputs.endpoint": {"from": None, "to": f"https://{external_id}"},
        "outputs.status": {"from": "creating", "to": "ready"},
    }
    outputs = engine.snapshot().resources["cluster.main"].outputs
    assert outputs["endpoint"] == f"https://{external_id}"
