"""Tests del planner: acciones por nodo, orden del ChangeSet y escenarios de referencia."""

import pytest

from forja.core.errors import DestructiveChangeError
from forja.core.models import Lifecycle
from forja.core.project.detector import detect_drift
from forja.core.project.executor import Executor
from forja.core.project.planner import Action, Planner, diff_fields
from forja.core.values import UNKNOWN, NodeId


def apply_all(store, registry, nodes, settings, allow_destructive=False):
    changeset = Planner(store, registry).plan(nodes)
    result = Executor(store, registry, nodes, settings).apply(changeset, allow_destructive=allow_destructive)
    assert result.ok, result.error
    return changeset


class TestDiffFields:
    def test_unknown_counts_as_changed(self):
        assert diff_fields({"a": UNKNOWN, "b": 1}, {"a": "x", "b": 1}) == ["a"]

    def test_added_removed_and_ignored(self):
        assert diff_fields({"a": 1, "c": 3}, {"a": 1, "b": 2}, ignore=("c",)) == ["b"]


class TestPlanner:
    def test_empty_state_plans_create_in_topological_order(self, store, registry, chain):
        changeset = Planner(store, registry).plan(chain)
        assert changeset.actions() == [
            ("test_net.net", "create"),
            ("test_cluster.cluster", "create"),
            ("test_pool.pool", "create"),
        ]

    def test_second_plan_is_all_noop(self, store, registry, chain, settings):
        apply_all(store, registry, chain, settings)
        changeset = Planner(store, registry).plan(chain)
        assert {a for _, a in changeset.actions()} == {"no-op"}
        assert not changeset.has_changes

    def test_removed_node_is_the_only_change(self, store, registry, chain, settings):
        apply_all(store, registry, chain, settings)
        changeset = Planner(store, registry).plan(chain[:2])
        assert changeset.changes and [(str(e.node), e.action.value) for e in changeset.changes] == [
            ("test_pool.pool", "destroy"),
        ]

    def test_immutable_change_replaces_and_dependent_updates(self, store, registry, chain, settings, make_node):
        apply_all(store, registry, chain, settings)
        changed = [
            chain[0],
            make_node("test_cluster.cluster", {"zone": "b", "network": "${test_net.net.id}"}, index=1),
            chain[2],
        ]
        changeset = Planner(store, registry).plan(changed)
        assert [(str(e.node), e.action.value) for e in changeset.changes] == [
            ("test_cluster.cluster", "replace"),
            ("test_pool.pool", "update"),
        ]
        assert changeset.entry(NodeId.parse("test_pool.pool")).changed_fields == ("cluster",)

    def test_mutable_change_updates(self, store, registry, chain, settings, make_node):
        apply_all(store, registry, chain, settings)
        changed = chain[:2] + [
            make_node("test_pool.pool", {"machine": "small", "cluster": "${test_cluster.cluster.id}", "size": 3}, index=2),
        ]
        entry = Planner(store, registry).plan(changed).entry(NodeId.parse("test_pool.pool"))
        assert entry.action is Action.UPDATE
        assert entry.changed_fields == ("size",)

    def test_ignore_changes(self, store, registry, settings, make_node):
        node = make_node("test_net.n", {"cidr": "a", "label": "x"}, lifecycle=Lifecycle(ignore_changes=("label",)))
        apply_all(store, registry, [node], settings)
        relabeled = make_node("test_net.n", {"cidr": "a", "label": "y"}, lifecycle=Lifecycle(ignore_changes=("label",)))
        assert Planner(store, registry).plan([relabeled]).entries[0].action is Action.NOOP

    def test_destroy_order_is_reverse_of_create_order(self, store, registry, chain, settings):
        create = apply_all(store, registry, chain, settings)
        teardown = Planner(store, registry).plan_destroy()
        assert [e.node for e in teardown.changes] == list(reversed([e.node for e in create.changes]))
        assert {e.action for e in teardown.entries} == {Action.DESTROY}

    def test_data_bearing_replace_is_destructive(self, store, registry, settings, make_node):
        apply_all(store, registry, [make_node("test_db.main", {"engine": "pg14"})], settings)
        changeset = Planner(store, registry).plan([make_node("test_db.main", {"engine": "pg15"})])
        assert changeset.destructive_entries[0].action is Action.REPLACE

    def test_prevent_destroy_blocks_replace(self, store, registry, settings, make_node):
        protected = Lifecycle(prevent_destroy=True)
        apply_all(store, registry, [make_node("test_db.main", {"engine": "pg14"}, lifecycle=protected)], settings)
        with pytest.raises(DestructiveChangeError) as exc:
            Planner(store, registry).plan([make_node("test_db.main", {"engine": "pg15"}, lifecycle=protected)])
        assert exc.value.nodes == [NodeId.parse("test_db.main")]

    def test_create_before_destroy_flag_is_carried(self, store, registry, settings, make_node):
        cbd = Lifecycle(create_before_destroy=True)
        apply_all(store, registry, [make_node("test_net.n", {"cidr": "a"}, lifecycle=cbd)], settings)
        entry = Planner(store, registry).plan([make_node("test_net.n", {"cidr": "b"}, lifecycle=cbd)]).entries[0]
        assert entry.action is Action.REPLACE
        assert entry.create_before_destroy is True

    def test_replace_policy_from_resource_type(self, store, registry, settings, make_node):
        apply_all(store, registry, [
            make_node("test_lb.front", {"port": 80}),
            make_node("test_net.n", {"cidr": "a"}, index=1),
        ], settings)
        changeset = Planner(store, registry).plan([
            make_node("test_lb.front", {"port": 443}),
            make_node("test_net.n", {"cidr": "b"}, index=1),
        ])
        assert changeset.entry(NodeId.parse("test_lb.front")).create_before_destroy is True
        assert changeset.entry(NodeId.parse("test_net.n")).create_before_destroy is False

    def test_planner_never_writes_state(self, store, registry, chain):
        Planner(store, registry).plan(chain)
        assert len(store) == 0
        assert store.serial == 0


class TestDriftPlanning:
    def test_drift_forces_update_with_warning(self, store, registry, provider, settings, make_node):
        node = make_node("test_pool.p", {"machine": "small", "size": 2})
        apply_all(store, registry, [node], settings)
        provider.tamper(store.get(node.id).resource_id, size=5)

        drift = detect_drift(store, registry)
        changeset = Planner(store, registry).plan([node], drift=drift)
        entry = changeset.entries[0]
        assert entry.action is Action.UPDATE
        assert entry.changed_fields == ("size",)
        assert [w.field for w in changeset.warnings] == ["size"]

    def test_drift_on_immutable_field_forces_replace(self, store, registry, provider, settings, make_node):
        node = make_node("test_pool.p", {"machine": "small"})
        apply_all(store, registry, [node], settings)
        provider.tamper(store.get(node.id).resource_id, machine="large")
        changeset = Planner(store, registry).plan([node], drift=detect_drift(store, registry))
        assert changeset.entries[0].action is Action.REPLACE

    def test_missing_object_is_recreated(self, store, registry, provider, settings, make_node):
        node = make_node("test_net.n", {"cidr": "a"})
        apply_all(store, registry, [node], settings)
        provider.forget(store.get(node.id).resource_id)
        changeset = Planner(store, registry).plan([node], drift=detect_drift(store, registry))
        assert changeset.entries[0].action is Action.CREATE
