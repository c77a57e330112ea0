"""Tests del executor: orden, fallos parciales, cancelación, timeouts y paralelismo."""

import threading
import time

import pytest

from forja.core.errors import DestructiveChangeError, OperationCancelled, ProviderError, ProviderTimeoutError
from forja.core.infra.contracts import CancelToken
from forja.core.infra.registry import ProviderRegistry
from forja.core.models import Lifecycle
from forja.core.project.executor import Executor
from forja.core.project.planner import Action, Planner
from forja.core.runtime.settings import EngineSettings
from forja.core.values import NodeId
from forja.providers.memory import InMemoryProvider
from tests.conftest import TEST_SCHEMAS


NET = NodeId.parse("test_net.net")
CLUSTER = NodeId.parse("test_cluster.cluster")
POOL = NodeId.parse("test_pool.pool")


def run(store, registry, nodes, settings, **kwargs):
    changeset = Planner(store, registry).plan(nodes)
    cancel = kwargs.pop("cancel", None)
    return changeset, Executor(store, registry, nodes, settings, cancel=cancel).apply(changeset, **kwargs)


class TestOrdering:
    def test_sequential_follows_changeset_order(self, store, registry, provider, chain, settings):
        _, result = run(store, registry, chain, settings)
        assert result.ok
        assert [n for op, n in provider.operations("create")] == [NET, CLUSTER, POOL]
        assert [e.node for e in result.applied] == [NET, CLUSTER, POOL]

    def test_references_resolved_from_committed_state(self, store, registry, chain, settings):
        run(store, registry, chain, settings)
        assert store.get(CLUSTER).inputs["network"] == store.get(NET).resource_id
        assert store.get(POOL).inputs["cluster"] == store.get(CLUSTER).resource_id
        assert store.get(POOL).dependencies == [CLUSTER]

    def test_update_keeps_remote_id_and_bumps_generation(self, store, registry, settings, make_node):
        run(store, registry, [make_node("test_pool.p", {"machine": "a", "size": 1})], settings)
        first = store.get(NodeId.parse("test_pool.p"))
        changeset, result = run(store, registry, [make_node("test_pool.p", {"machine": "a", "size": 2})], settings)
        assert changeset.entries[0].action is Action.UPDATE
        updated = store.get(NodeId.parse("test_pool.p"))
        assert updated.resource_id == first.resource_id
        assert updated.generation == 2
        assert updated.inputs["size"] == 2

    def test_destroys_run_before_creates(self, store, registry, provider, settings, make_node):
        run(store, registry, [make_node("test_net.old", {})], settings)
        parallel = settings.model_copy(update={"parallelism": 4})
        _, result = run(store, registry, [make_node("test_net.new", {})], parallel)
        assert result.ok
        ops = [op for op, _ in provider.operations() if op in ("create", "delete")]
        assert ops == ["create", "delete", "create"]

    def test_dependent_drops_reference_before_removed_node_is_destroyed(self, store, registry, provider, settings, make_node):
        net = NodeId.parse("test_net.a")
        pool = NodeId.parse("test_pool.b")
        run(store, registry, [
            make_node("test_net.a", {"cidr": "10.0.0.0/16"}),
            make_node("test_pool.b", {"machine": "small", "network": "${test_net.a.id}"}, index=1),
        ], settings)

        parallel = settings.model_copy(update={"parallelism": 4})
        changeset, result = run(store, registry, [make_node("test_pool.b", {"machine": "small"})], parallel)
        assert changeset.actions() == [("test_net.a", "destroy"), ("test_pool.b", "update")]
        assert result.ok, result.error
        assert [(op, n) for op, n in provider.operations() if op in ("update", "delete")] == [
            ("update", pool),
            ("delete", net),
        ]
        assert store.get(pool).dependencies == []


class TestFailures:
    def test_partial_failure_keeps_committed_nodes(self, store, chain, settings):
        provider = InMemoryProvider("test", TEST_SCHEMAS, fail_on={CLUSTER: "create"})
        registry = _registry(provider)
        _, result = run(store, registry, chain, settings)

        assert not result.ok
        assert result.failed == CLUSTER
        assert isinstance(result.error, ProviderError)
        assert "test_cluster.cluster" in str(result.error)
        assert store.get(NET) is not None
        assert store.get(CLUSTER) is None
        assert store.get(POOL) is None
        assert [e.node for e in result.skipped] == [POOL]

    def test_next_run_resumes_from_committed_state(self, store, chain, settings):
        provider = InMemoryProvider("test", TEST_SCHEMAS, fail_on={CLUSTER: "create"})
        registry = _registry(provider)
        run(store, registry, chain, settings)

        provider.fail_on.clear()
        changeset, result = run(store, registry, chain, settings)
        assert changeset.actions() == [
            ("test_net.net", "no-op"),
            ("test_cluster.cluster", "create"),
            ("test_pool.pool", "create"),
        ]
        assert result.ok

    def test_destructive_changes_need_confirmation(self, store, registry, settings, make_node):
        run(store, registry, [make_node("test_db.main", {"engine": "pg14"})], settings)
        changeset = Planner(store, registry).plan([make_node("test_db.main", {"engine": "pg15"})])
        executor = Executor(store, registry, [make_node("test_db.main", {"engine": "pg15"})], settings)
        with pytest.raises(DestructiveChangeError):
            executor.apply(changeset)
        assert store.get(NodeId.parse("test_db.main")).inputs["engine"] == "pg14"
        assert executor.apply(changeset, allow_destructive=True).ok


class TestCancellationAndTimeouts:
    def test_cancel_before_start_applies_nothing(self, store, registry, chain, settings):
        cancel = CancelToken()
        cancel.cancel()
        _, result = run(store, registry, chain, settings, cancel=cancel)
        assert isinstance(result.error, OperationCancelled)
        assert result.failed is None
        assert result.applied == []
        assert len(store) == 0

    def test_cancel_during_operation_halts_like_failure(self, store, chain, settings):
        provider = InMemoryProvider("test", TEST_SCHEMAS, delays={CLUSTER: 2.0})
        registry = _registry(provider)
        cancel = CancelToken()
        threading.Timer(0.1, cancel.cancel).start()
        _, result = run(store, registry, chain, settings, cancel=cancel)
        assert isinstance(result.error, OperationCancelled)
        assert result.failed == CLUSTER
        assert store.get(NET) is not None
        assert store.get(CLUSTER) is None
        assert store.get(POOL) is None

    def test_timeout_is_a_provider_error(self, store, chain):
        provider = InMemoryProvider("test", TEST_SCHEMAS, delays={NET: 2.0})
        settings = EngineSettings(operation_timeout=0.1, poll_interval=0.01)
        _, result = run(store, _registry(provider), chain, settings)
        assert isinstance(result.error, ProviderTimeoutError)
        assert result.failed == NET
        assert len(store) == 0

    def test_abandoned_operation_never_commits(self, store, chain):
        provider = _StubbornProvider("test", TEST_SCHEMAS)
        settings = EngineSettings(operation_timeout=0.1, poll_interval=0.01)
        _, result = run(store, _registry(provider), chain[:1], settings)
        assert isinstance(result.error, ProviderTimeoutError)
        provider.finished.wait(2)
        time.sleep(0.05)
        assert store.get(NET) is None


class TestParallelism:
    def test_independent_nodes_run_concurrently(self, store, make_node):
        provider = _BarrierProvider("test", TEST_SCHEMAS, parties=3)
        nodes = [make_node(f"test_net.n{i}", {}, index=i) for i in range(3)]
        settings = EngineSettings(parallelism=3, operation_timeout=5, poll_interval=0.01)
        _, result = run(store, _registry(provider), nodes, settings)
        assert result.ok, result.error
        assert len(store) == 3

    def test_dependents_wait_for_commit(self, store, chain):
        provider = InMemoryProvider("test", TEST_SCHEMAS, delays={NET: 0.1})
        settings = EngineSettings(parallelism=4, operation_timeout=5, poll_interval=0.01)
        _, result = run(store, _registry(provider), chain, settings)
        assert result.ok
        assert [n for _, n in provider.operations("create")] == [NET, CLUSTER, POOL]


class TestReplace:
    def test_destroy_then_create_by_default(self, store, registry, provider, settings, make_node):
        run(store, registry, [make_node("test_net.n", {"cidr": "a"})], settings)
        old_id = store.get(NodeId.parse("test_net.n")).resource_id
        run(store, registry, [make_node("test_net.n", {"cidr": "b"})], settings)
        assert [op for op, _ in provider.operations() if op != "read"][-2:] == ["delete", "create"]
        assert store.get(NodeId.parse("test_net.n")).resource_id != old_id
        assert old_id not in provider.ids()

    def test_create_before_destroy(self, store, registry, provider, settings, make_node):
        cbd = Lifecycle(create_before_destroy=True)
        run(store, registry, [make_node("test_net.n", {"cidr": "a"}, lifecycle=cbd)], settings)
        old_id = store.get(NodeId.parse("test_net.n")).resource_id
        changeset, _ = run(store, registry, [make_node("test_net.n", {"cidr": "b"}, lifecycle=cbd)], settings)
        assert [(e.action, e.deposed_id) for e in changeset.changes] == [
            (Action.REPLACE, None),
            (Action.DESTROY, old_id),
        ]
        assert [op for op, _ in provider.operations()][-2:] == ["create", "delete"]
        state = store.get(NodeId.parse("test_net.n"))
        assert state.resource_id != old_id
        assert state.deposed == []
        assert provider.ids() == [state.resource_id]

    def test_old_object_outlives_dependent_updates(self, store, registry, provider, chain, settings, make_node):
        run(store, registry, chain, settings)
        old_cluster = store.get(CLUSTER).resource_id
        cbd = Lifecycle(create_before_destroy=True)
        changed = [
            chain[0],
            make_node("test_cluster.cluster", {"zone": "b", "network": "${test_net.net.id}"}, index=1, lifecycle=cbd),
            chain[2],
        ]
        parallel = settings.model_copy(update={"parallelism": 4})
        _, result = run(store, registry, changed, parallel)
        assert result.ok, result.error
        calls = [(op, n) for op, n in provider.operations() if op != "read"][-3:]
        assert calls == [("create", CLUSTER), ("update", POOL), ("delete", CLUSTER)]
        assert store.get(POOL).inputs["cluster"] == store.get(CLUSTER).resource_id
        assert old_cluster not in provider.ids()

    def test_failed_delete_leaves_deposed_object_for_next_run(self, store, settings, make_node):
        node_id = NodeId.parse("test_net.n")
        provider = InMemoryProvider("test", TEST_SCHEMAS)
        registry = _registry(provider)
        cbd = Lifecycle(create_before_destroy=True)
        run(store, registry, [make_node("test_net.n", {"cidr": "a"}, lifecycle=cbd)], settings)
        old_id = store.get(node_id).resource_id

        provider.fail_on[node_id] = "delete"
        _, result = run(store, registry, [make_node("test_net.n", {"cidr": "b"}, lifecycle=cbd)], settings)
        assert not result.ok
        assert store.get(node_id).deposed == [old_id]

        provider.fail_on.clear()
        changeset, result = run(store, registry, [make_node("test_net.n", {"cidr": "b"}, lifecycle=cbd)], settings)
        assert [(e.action, e.deposed_id) for e in changeset.changes] == [(Action.DESTROY, old_id)]
        assert result.ok
        assert store.get(node_id).deposed == []
        assert old_id not in provider.ids()

    def test_destroy_takes_deposed_objects_along(self, store, settings, make_node):
        node_id = NodeId.parse("test_net.n")
        provider = InMemoryProvider("test", TEST_SCHEMAS)
        registry = _registry(provider)
        cbd = Lifecycle(create_before_destroy=True)
        run(store, registry, [make_node("test_net.n", {"cidr": "a"}, lifecycle=cbd)], settings)
        old_id = store.get(node_id).resource_id
        provider.fail_on[node_id] = "delete"
        run(store, registry, [make_node("test_net.n", {"cidr": "b"}, lifecycle=cbd)], settings)
        assert store.get(node_id).deposed == [old_id]

        provider.fail_on.clear()
        teardown = Planner(store, registry).plan_destroy()
        assert [(e.action, e.deposed_id) for e in teardown.changes] == [(Action.DESTROY, None)]
        result = Executor(store, registry, [], settings).apply(teardown)
        assert result.ok, result.error
        assert len(store) == 0
        assert provider.ids() == []


def _registry(provider):
    registry = ProviderRegistry()
    registry.register(provider.name, provider)
    return registry


class _StubbornProvider(InMemoryProvider):
    """Ignora timeout y cancelación: termina tarde y aun así devuelve outputs."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.finished = threading.Event()

    def create(self, resource_type, attributes, ctx):
        time.sleep(0.3)
        try:
            return super().create(resource_type, attributes, ctx)
        finally:
            self.finished.set()


class _BarrierProvider(InMemoryProvider):
    """Cada create espera a que los demás hayan arrancado: solo pasa en paralelo."""

    def __init__(self, *args, parties=2, **kwargs):
        super().__init__(*args, **kwargs)
        self.barrier = threading.Barrier(parties, timeout=2)

    def create(self, resource_type, attributes, ctx):
        self.barrier.wait()
        return super().create(resource_type, attributes, ctx)
