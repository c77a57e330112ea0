"""
Grafo de dependencias entre nodos.

Lista de adyacencia indexada por NodeId + tabla de nodos; se reconstruye
desde las declaraciones en cada ejecución. Orden topológico determinista:
Kahn con desempate por orden de declaración.
"""

import heapq
from typing import Dict, Hashable, Iterable, List, Mapping, Sequence, Set, TypeVar

from forja.core.errors import ConfigError, CycleError
from forja.core.models import Node
from forja.core.values import NodeId


K = TypeVar("K", bound=Hashable)


def topological_sort(keys: Sequence[K], dependencies: Mapping[K, Iterable[K]]) -> List[K]:
    """
    Orden topológico de `keys`; la posición en `keys` desempata.

    dependencies[k] son las claves que deben ir antes que k. Las dependencias
    fuera de `keys` se ignoran.

    Raises:
        CycleError con todos los miembros de cada ciclo
    """
    position = {k: i for i, k in enumerate(keys)}
    dependents: Dict[K, List[K]] = {k: [] for k in keys}
    indegree: Dict[K, int] = {k: 0 for k in keys}
    for k in keys:
        for dep in set(dependencies.get(k, ())):
            if dep in position:
                dependents[dep].append(k)
                indegree[k] += 1

    ready = [(position[k], k) for k in keys if indegree[k] == 0]
    heapq.heapify(ready)
    order: List[K] = []
    while ready:
        _, k = heapq.heappop(ready)
        order.append(k)
        for child in dependents[k]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, (position[child], child))

    if len(order) != len(keys):
        remaining = [k for k in keys if indegree[k] > 0]
        members = _cycle_members(remaining, dependents)
        raise CycleError(sorted(members, key=lambda k: position[k]))
    return order


def _cycle_members(remaining: List[K], dependents: Mapping[K, List[K]]) -> List[K]:
    """Nodos en componentes fuertemente conexas con ciclo (Tarjan iterativo)."""
    allowed = set(remaining)
    index: Dict[K, int] = {}
    low: Dict[K, int] = {}
    on_stack: Set[K] = set()
    stack: List[K] = []
    members: List[K] = []
    counter = 0

    for root in remaining:
        if root in index:
            continue
        work = [(root, iter([c for c in dependents[root] if c in allowed]))]
        index[root] = low[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        while work:
            current, children = work[-1]
            advanced = False
            for child in children:
                if child not in index:
                    index[child] = low[child] = counter
                    counter += 1
                    stack.append(child)
                    on_stack.add(child)
                    work.append((child, iter([c for c in dependents[child] if c in allowed])))
                    advanced = True
                    break
                if child in on_stack:
                    low[current] = min(low[current], index[child])
            if advanced:
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[current])
            if low[current] == index[current]:
                component = []
                while True:
                    k = stack.pop()
                    on_stack.discard(k)
                    component.append(k)
                    if k == current:
                        break
                if len(component) > 1 or current in dependents[current]:
                    members.extend(component)
    return members


class DependencyGraph:
    """DAG de nodos: arista (a → b) significa que a se aplica antes que b."""

    def __init__(self, nodes: Iterable[Node]):
        self._nodes: Dict[NodeId, Node] = {}
        for node in nodes:
            if node.id in self._nodes:
                raise ConfigError(f"Nodo duplicado: {node.id}")
            self._nodes[node.id] = node

        self._dependencies: Dict[NodeId, Set[NodeId]] = {}
        self._dependents: Dict[NodeId, Set[NodeId]] = {nid: set() for nid in self._nodes}
        for node in self._nodes.values():
            deps = set(node.dependencies)
            for dep in deps:
                if dep not in self._nodes:
                    kind = "depends_on" if dep in node.depends_on and dep not in node.references else "referencia"
                    raise ConfigError(f"{node.id}: {kind} a un nodo no declarado: {dep}")
                self._dependents[dep].add(node.id)
            self._dependencies[node.id] = deps

        declared = sorted(self._nodes, key=lambda nid: self._nodes[nid].index)
        self.order: List[NodeId] = topological_sort(declared, self._dependencies)

    def __contains__(self, node_id: NodeId) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, node_id: NodeId) -> Node:
        return self._nodes[node_id]

    def nodes(self) -> List[Node]:
        """Nodos en orden topológico."""
        return [self._nodes[nid] for nid in self.order]

    def dependencies(self, node_id: NodeId) -> Set[NodeId]:
        return set(self._dependencies[node_id])

    def dependents(self, node_id: NodeId) -> Set[NodeId]:
        return set(self._dependents[node_id])

    def edges(self) -> List[tuple]:
        """Aristas (origen, destino) en orden topológico del destino."""
        out = []
        for nid in self.order:
            for dep in sorted(self._dependencies[nid], key=lambda d: self.order.index(d)):
                out.append((dep, nid))
        return out

    def to_dot(self) -> str:
        lines = ["digraph forja {", "  rankdir=LR;"]
        for nid in self.order:
            lines.append(f'  "{nid}";')
        for src, dst in self.edges():
            lines.append(f'  "{src}" -> "{dst}";')
        lines.append("}")
        return "\n".join(lines)
