"""
Fixtures compartidas por los tests.

- provider / registry: InMemoryProvider "test" con esquemas de prueba
- store: StateStore en memoria
- make_node: construye Nodes desde atributos con sintaxis ${tipo.nombre.attr}
- settings: EngineSettings rápidos (poll corto)
"""

from pathlib import Path

import pytest

from forja.core.infra.contracts import ResourceSchema
from forja.core.infra.registry import ProviderRegistry
from forja.core.models import Lifecycle, Node
from forja.core.runtime.settings import EngineSettings
from forja.core.runtime.state import StateStore
from forja.core.values import NodeId, collect_references, parse_value
from forja.providers.memory import InMemoryProvider


ROOT = Path(__file__).resolve().parents[1]
INFERENCE_STACK = ROOT / "stacks" / "inference"
EXAMPLE_VARS = INFERENCE_STACK / "example.vars.yaml"

TEST_SCHEMAS = {
    "test_net": ResourceSchema(immutable=frozenset({"cidr"})),
    "test_cluster": ResourceSchema(immutable=frozenset({"zone"})),
    "test_pool": ResourceSchema(immutable=frozenset({"machine"})),
    "test_db": ResourceSchema(immutable=frozenset({"engine"}), data_bearing=True, sensitive=frozenset({"password"})),
    "test_lb": ResourceSchema(immutable=frozenset({"port"}), create_before_destroy=True),
}


@pytest.fixture
def provider():
    return InMemoryProvider("test", TEST_SCHEMAS)


@pytest.fixture
def registry(provider):
    registry = ProviderRegistry()
    registry.register("test", provider)
    return registry


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def settings():
    return EngineSettings(parallelism=1, operation_timeout=5, poll_interval=0.01)


@pytest.fixture
def make_node():
    """make_node("test_pool.a", {"cluster": "${test_cluster.main.id}"}, index=2)"""
    def factory(node_id, attributes=None, depends_on=(), index=0, lifecycle=None, provider="test"):
        parsed = parse_value(attributes or {}, {})
        return Node(
            id=NodeId.parse(node_id),
            attributes=parsed,
            references=frozenset(collect_references(parsed)),
            provider=provider,
            depends_on=tuple(NodeId.parse(d) for d in depends_on),
            lifecycle=lifecycle or Lifecycle(),
            index=index,
        )
    return factory


@pytest.fixture
def chain(make_node):
    """net → cluster → pool"""
    return [
        make_node("test_net.net", {"cidr": "10.0.0.0/16"}, index=0),
        make_node("test_cluster.cluster", {"zone": "a", "network": "${test_net.net.id}"}, index=1),
        make_node("test_pool.pool", {"machine": "small", "cluster": "${test_cluster.cluster.id}"}, index=2),
    ]
