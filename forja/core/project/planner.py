"""
Planificación: genera el ChangeSet (qué aplicar) sin ejecutar.

Lógica pura: entrada = nodos declarados + estado aplicado (solo lectura) +
esquemas de los providers; salida = lista ordenada de acciones.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from forja.core.errors import DestructiveChangeError, DriftError
from forja.core.graph.builder import DependencyGraph, topological_sort
from forja.core.infra.registry import ProviderRegistry
from forja.core.project.detector import DriftReport
from forja.core.models import Node
from forja.core.values import (
    UNKNOWN,
    NodeId,
    Reference,
    contains_unknown,
    lookup_path,
    resolve,
)
from forja.core.runtime.state import AppliedState, StateStore


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"
    NOOP = "no-op"


@dataclass(frozen=True)
class ChangeEntry:
    """Acción planificada para un nodo."""
    node: NodeId
    action: Action
    reason: str = ""
    changed_fields: Tuple[str, ...] = ()
    destructive: bool = False
    create_before_destroy: bool = False
    deposed_id: Optional[str] = None  # Solo Destroy de un objeto depuesto


@dataclass
class ChangeSet:
    entries: List[ChangeEntry] = field(default_factory=list)
    warnings: List[DriftError] = field(default_factory=list)

    @property
    def changes(self) -> List[ChangeEntry]:
        """Entradas que implican alguna operación (sin NoOp)."""
        return [e for e in self.entries if e.action is not Action.NOOP]

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def destructive_entries(self) -> List[ChangeEntry]:
        return [e for e in self.entries if e.destructive]

    def entry(self, node_id: NodeId) -> Optional[ChangeEntry]:
        for e in self.entries:
            if e.node == node_id and e.deposed_id is None:
                return e
        return None

    def actions(self) -> List[Tuple[str, str]]:
        """[(nodo, acción)] en orden; útil para mostrar y para tests."""
        return [(str(e.node), e.action.value) for e in self.entries]

    def summary(self) -> Dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for e in self.entries:
            counts[e.action.value] += 1
        return counts


def diff_fields(desired: Dict[str, Any], applied: Dict[str, Any], ignore: Sequence[str] = ()) -> List[str]:
    """Campos de primer nivel que difieren (un valor UNKNOWN siempre cuenta como cambio)."""
    changed = []
    for key in sorted(set(desired) | set(applied)):
        if key in ignore:
            continue
        if key not in desired or key not in applied:
            changed.append(key)
            continue
        value = desired[key]
        if contains_unknown(value) or value != applied[key]:
            changed.append(key)
    return changed


class Planner:
    """Compara estado declarado contra el último estado aplicado."""

    def __init__(self, store: StateStore, registry: ProviderRegistry):
        self.store = store
        self.registry = registry

    def plan(
        self,
        nodes: Sequence[Node],
        graph: Optional[DependencyGraph] = None,
        drift: Optional[DriftReport] = None,
    ) -> ChangeSet:
        """
        Calcula el ChangeSet.

        Orden: primero Destroy de nodos eliminados (dependientes antes que
        sus dependencias) y de objetos depuestos; después el resto en orden
        topológico; al final el Destroy del objeto anterior de cada Replace
        con create_before_destroy.

        Raises:
            ConfigError / CycleError si la declaración es inválida
            DestructiveChangeError si se destruiría un nodo con prevent_destroy
        """
        graph = graph or DependencyGraph(nodes)
        declared = {n.id: n for n in nodes}
        changeset = ChangeSet()
        if drift:
            changeset.warnings.extend(drift.warnings())

        snapshot = self.store.snapshot()
        removed = [s for s in snapshot if s.id not in declared]
        changeset.entries.extend(self._destroy_entries(removed))
        # Los depuestos de un nodo eliminado se destruyen junto con el nodo
        for state in snapshot:
            if state.id not in declared:
                continue
            for deposed_id in state.deposed:
                changeset.entries.append(ChangeEntry(
                    node=state.id,
                    action=Action.DESTROY,
                    reason=f"objeto depuesto {deposed_id}",
                    deposed_id=deposed_id,
                ))

        pending: Set[NodeId] = set()
        for node_id in graph.order:
            entry = self._plan_node(graph.node(node_id), pending, drift)
            if entry.action in (Action.CREATE, Action.REPLACE):
                pending.add(node_id)
            changeset.entries.append(entry)

        for entry in [e for e in changeset.entries if e.action is Action.REPLACE and e.create_before_destroy]:
            old_id = self.store.get(entry.node).resource_id
            changeset.entries.append(ChangeEntry(
                node=entry.node,
                action=Action.DESTROY,
                reason=f"reemplazado (create_before_destroy): {old_id}",
                deposed_id=old_id,
            ))

        protected = [
            e.node for e in changeset.entries
            if e.action is Action.REPLACE and declared[e.node].lifecycle.prevent_destroy
        ]
        if protected:
            names = ", ".join(str(n) for n in protected)
            raise DestructiveChangeError(
                f"El plan reemplazaría recursos con prevent_destroy: {names}", nodes=protected
            )
        return changeset

    def plan_destroy(self) -> ChangeSet:
        """Plan de desmontaje total: todo lo que hay en el estado se destruye."""
        return self.plan([])

    def _destroy_entries(self, removed: List[AppliedState]) -> List[ChangeEntry]:
        if not removed:
            return []
        keys = [s.id for s in removed]
        deps = {s.id: s.dependencies for s in removed}
        create_order = topological_sort(keys, deps)
        entries = []
        for node_id in reversed(create_order):
            state = next(s for s in removed if s.id == node_id)
            schema = self.registry.schema(state.provider, node_id.type)
            entries.append(ChangeEntry(
                node=node_id,
                action=Action.DESTROY,
                reason="ya no está declarado",
                destructive=schema.data_bearing,
            ))
        return entries

    def _lookup(self, pending: Set[NodeId]):
        def lookup(ref: Reference) -> Any:
            if ref.node in pending:
                return UNKNOWN
            state = self.store.get(ref.node)
            if state is None:
                return UNKNOWN
            return lookup_path(state.attributes, ref.path, owner=ref.node)
        return lookup

    def _plan_node(self, node: Node, pending: Set[NodeId], drift: Optional[DriftReport]) -> ChangeEntry:
        state = self.store.get(node.id)
        if state is not None and drift and node.id in drift.missing:
            return ChangeEntry(node.id, Action.CREATE, reason="eliminado fuera de forja (drift)")
        if state is None:
            return ChangeEntry(node.id, Action.CREATE, reason="no existe en el estado")

        schema = self.registry.schema(node.provider, node.type)
        desired = resolve(dict(node.attributes), self._lookup(pending))
        changed = set(diff_fields(desired, state.inputs, node.lifecycle.ignore_changes))
        drifted = drift.fields_for(node.id) if drift else set()
        fields = tuple(sorted(changed | drifted))
        if not fields:
            return ChangeEntry(node.id, Action.NOOP)

        immutable = [f for f in fields if f in schema.immutable]
        if immutable:
            return ChangeEntry(
                node=node.id,
                action=Action.REPLACE,
                reason=f"cambio en campo inmutable: {', '.join(immutable)}",
                changed_fields=fields,
                destructive=schema.data_bearing,
                create_before_destroy=node.lifecycle.create_before_destroy or schema.create_before_destroy,
            )
        if changed:
            reason = f"campos modificados: {', '.join(sorted(changed))}"
        else:
            reason = f"drift en: {', '.join(sorted(drifted))}"
        return ChangeEntry(node.id, Action.UPDATE, reason=reason, changed_fields=fields)
