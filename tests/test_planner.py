"""Tests for planning/planner.py.

Tests for diffing declarations against state snapshots.
"""

import pytest

from landform.core.errors import ConfigurationError, PlanError, TransientProviderError
from landform.graph import build_graph
from landform.model import ResourceKey, ResourceRef, ResourceSpec
from landform.planning import (
    Action,
    DestroyPolicy,
    Planner,
    build_plan,
    compute_fingerprint,
)
from landform.planning.planner import VANISHED
from landform.providers import InMemoryProvider, ProviderAdapterSet, RetryPolicy
from landform.state import InMemoryStateStore, StateRecord, StateSnapshot


def key(value: str) -> ResourceKey:
    return ResourceKey.parse(value)


def record(kind, name, provider_id, attributes, dependencies=(), observed=None, serial=1):
    return StateRecord(
        kind=kind,
        name=name,
        provider_id=provider_id,
        fingerprint=compute_fingerprint(attributes),
        attributes=attributes,
        observed=observed or {},
        dependencies=list(dependencies),
        serial=serial,
    )


def snapshot_of(*records, corrupt=None):
    return StateSnapshot(records={r.key: r for r in records}, corrupt=dict(corrupt or {}))


NETWORK = ResourceSpec("network", "main", {"cidr": "10.0.0.0/16"})
SUBNET = ResourceSpec(
    "subnet", "a", {"network_id": ResourceRef("network", "main"), "cidr": "10.0.1.0/24"}
)


def applied_network(cidr="10.0.0.0/16", **kwargs):
    return record("network", "main", "net-1", {"cidr": cidr}, **kwargs)


def applied_subnet(**kwargs):
    return record(
        "subnet",
        "a",
        "sub-1",
        {"network_id": "net-1", "cidr": "10.0.1.0/24"},
        dependencies=["network.main"],
        **kwargs,
    )


class TestFingerprint:
    """Tests for compute_fingerprint."""

    def test_key_order_does_not_matter(self):
        assert compute_fingerprint({"a": 1, "b": [1, 2]}) == compute_fingerprint({"b": [1, 2], "a": 1})

    def test_value_change_changes_fingerprint(self):
        assert compute_fingerprint({"a": 1}) != compute_fingerprint({"a": 2})

    def test_is_sha256_hex(self):
        fingerprint = compute_fingerprint({})
        assert len(fingerprint) == 64
        int(fingerprint, 16)


class TestBuildPlan:
    """Tests for build_plan classification."""

    def test_empty_state_creates_everything(self, make_topology):
        graph = build_graph(make_topology().resources)
        plan = build_plan(graph, StateSnapshot())

        assert [item.action for item in plan] == [Action.CREATE] * 5
        assert all(item.reason == "not in state" for item in plan)
        assert plan.keys() == list(graph.topological_order())
        assert plan.item(key("subnet.a")).after == (key("network.main"),)

    def test_unchanged_resources_are_noop(self):
        graph = build_graph([NETWORK, SUBNET])
        plan = build_plan(graph, snapshot_of(applied_network(), applied_subnet()))

        assert [item.action for item in plan] == [Action.NOOP, Action.NOOP]
        assert not plan.has_changes
        assert plan.item(key("subnet.a")).reason == "up to date"

    def test_changed_attribute_is_update(self):
        graph = build_graph([NETWORK, SUBNET])
        plan = build_plan(graph, snapshot_of(applied_network(cidr="10.9.0.0/16"), applied_subnet()))

        network = plan.item(key("network.main"))
        assert network.action is Action.UPDATE
        assert network.reason == "attributes changed"
        assert network.desired_fingerprint == compute_fingerprint({"cidr": "10.0.0.0/16"})
        # provider ids survive updates, so the subnet resolves at plan time
        assert plan.item(key("subnet.a")).action is Action.NOOP

    def test_non_id_reference_to_updated_resource_is_pending(self):
        consumer = ResourceSpec("firewall", "f", {"cidr": ResourceRef("network", "main", "cidr")})
        graph = build_graph([NETWORK, consumer])
        state = snapshot_of(
            applied_network(cidr="10.9.0.0/16"),
            record("firewall", "f", "fw-1", {"cidr": "10.9.0.0/16"}, dependencies=["network.main"]),
        )
        plan = build_plan(graph, state)

        item = plan.item(key("firewall.f"))
        assert item.action is Action.UPDATE
        assert item.reason == "depends on values known after apply"
        assert item.pending == (ResourceRef("network", "main", "cidr"),)
        assert item.desired_fingerprint is None

    def test_reference_to_created_resource_is_pending(self):
        graph = build_graph([NETWORK, SUBNET])
        plan = build_plan(graph, snapshot_of(applied_subnet()))

        assert plan.item(key("network.main")).action is Action.CREATE
        assert plan.item(key("subnet.a")).action is Action.UPDATE
        assert plan.item(key("subnet.a")).pending == (ResourceRef("network", "main"),)

    def test_noop_dependency_attributes_come_from_observed(self):
        consumer = ResourceSpec("dns", "d", {"target": ResourceRef("network", "main", "gateway")})
        graph = build_graph([NETWORK, consumer])
        state = snapshot_of(
            applied_network(observed={"gateway": "10.0.0.1"}),
            record("dns", "d", "dns-1", {"target": "10.0.0.1"}, dependencies=["network.main"]),
        )
        plan = build_plan(graph, state)
        assert plan.item(key("dns.d")).action is Action.NOOP

    def test_missing_attribute_on_settled_dependency_is_plan_error(self):
        consumer = ResourceSpec("dns", "d", {"target": ResourceRef("network", "main", "nope")})
        graph = build_graph([NETWORK, consumer])
        state = snapshot_of(
            applied_network(),
            record("dns", "d", "dns-1", {"target": "x"}, dependencies=["network.main"]),
        )
        with pytest.raises(PlanError):
            build_plan(graph, state)

    def test_undeclared_records_are_deleted_consumers_first(self):
        graph = build_graph([])
        state = snapshot_of(applied_network(), applied_subnet())
        plan = build_plan(graph, state)

        assert [(item.key, item.action) for item in plan] == [
            (key("subnet.a"), Action.DELETE),
            (key("network.main"), Action.DELETE),
        ]
        assert plan.item(key("network.main")).after == (key("subnet.a"),)
        assert plan.item(key("subnet.a")).reason == "no longer declared"

    def test_delete_waits_for_reapplied_former_consumer(self):
        moved = ResourceSpec(
            "subnet", "a", {"network_id": ResourceRef("network", "new"), "cidr": "10.0.1.0/24"}
        )
        graph = build_graph([ResourceSpec("network", "new", {"cidr": "10.1.0.0/16"}), moved])
        state = snapshot_of(applied_network(), applied_subnet())
        plan = build_plan(graph, state)

        delete = plan.item(key("network.main"))
        assert delete.action is Action.DELETE
        assert delete.after == (key("subnet.a"),)
        # deletes come after every create/update/no-op
        assert plan.keys()[-1] == key("network.main")

    def test_corrupt_records_are_blocked(self):
        graph = build_graph([NETWORK, SUBNET])
        state = snapshot_of(applied_network(), corrupt={key("subnet.a"): "invalid JSON"})
        plan = build_plan(graph, state)

        assert plan.blocked == {key("subnet.a"): "invalid JSON"}
        assert plan.item(key("subnet.a")) is None
        assert plan.item(key("network.main")).action is Action.NOOP

    def test_corrupt_undeclared_record_is_not_deleted(self):
        plan = build_plan(build_graph([]), snapshot_of(corrupt={key("subnet.z"): "bad"}))
        assert len(plan) == 0
        assert key("subnet.z") in plan.blocked

    def test_drift_detected_from_observations(self):
        graph = build_graph([NETWORK])
        state = snapshot_of(applied_network())
        plan = build_plan(
            graph, state, observations={key("network.main"): {"cidr": "10.5.0.0/16"}}
        )
        item = plan.item(key("network.main"))
        assert item.action is Action.UPDATE
        assert item.reason == "drift detected in cidr"

    def test_vanished_resource_is_recreated(self):
        graph = build_graph([NETWORK])
        plan = build_plan(
            graph, snapshot_of(applied_network()), observations={key("network.main"): VANISHED}
        )
        item = plan.item(key("network.main"))
        assert item.action is Action.CREATE
        assert item.reason == "missing remotely"
        assert item.prior is not None

    def test_summary_and_destroy_policy(self):
        plan = build_plan(
            build_graph([NETWORK]),
            snapshot_of(applied_subnet()),
            destroy_policy=DestroyPolicy.SEPARATE,
        )
        assert plan.summary() == {"create": 1, "update": 0, "delete": 1, "no-op": 0}
        assert plan.to_dict()["destroy_policy"] == "separate"


class TestPlanner:
    """Tests for the async Planner facade."""

    @pytest.mark.asyncio
    async def test_plan_loads_state(self):
        store = InMemoryStateStore([applied_network()])
        plan = await Planner().plan(build_graph([NETWORK]), store)
        assert plan.item(key("network.main")).action is Action.NOOP

    @pytest.mark.asyncio
    async def test_missing_adapter_fails_before_calls(self):
        adapters = ProviderAdapterSet({"network": InMemoryProvider("network")})
        with pytest.raises(ConfigurationError, match="subnet"):
            await Planner().plan(build_graph([NETWORK, SUBNET]), InMemoryStateStore(), adapters=adapters)

    @pytest.mark.asyncio
    async def test_refresh_requires_adapters(self):
        with pytest.raises(ValueError):
            await Planner().plan(build_graph([NETWORK]), InMemoryStateStore(), refresh_state=True)

    @pytest.mark.asyncio
    async def test_refresh_reads_providers(self):
        provider = InMemoryProvider("network")
        provider_id = await provider.create({"cidr": "10.0.0.0/16"})
        store = InMemoryStateStore(
            [record("network", "main", provider_id, {"cidr": "10.0.0.0/16"})]
        )
        adapters = ProviderAdapterSet({"network": provider})

        plan = await Planner().plan(build_graph([NETWORK]), store, adapters=adapters, refresh_state=True)
        assert plan.item(key("network.main")).action is Action.NOOP

        provider.resources[provider_id]["cidr"] = "172.16.0.0/12"
        plan = await Planner().plan(build_graph([NETWORK]), store, adapters=adapters, refresh_state=True)
        assert plan.item(key("network.main")).reason == "drift detected in cidr"

        del provider.resources[provider_id]
        plan = await Planner().plan(build_graph([NETWORK]), store, adapters=adapters, refresh_state=True)
        assert plan.item(key("network.main")).reason == "missing remotely"

    @pytest.mark.asyncio
    async def test_refresh_retries_transient_failures(self):
        provider = InMemoryProvider("network")
        provider_id = await provider.create({"cidr": "10.0.0.0/16"})
        store = InMemoryStateStore(
            [record("network", "main", provider_id, {"cidr": "10.0.0.0/16"})]
        )
        adapters = ProviderAdapterSet({"network": provider})
        planner = Planner(retry=RetryPolicy(base_seconds=0, cap_seconds=0, max_attempts=3))

        provider.fail("read")
        plan = await planner.plan(build_graph([NETWORK]), store, adapters=adapters, refresh_state=True)
        assert plan.item(key("network.main")).action is Action.NOOP

        provider.fail("read", times=3)
        with pytest.raises(TransientProviderError):
            await planner.plan(build_graph([NETWORK]), store, adapters=adapters, refresh_state=True)
        assert len(provider.operations("read")) == 5
