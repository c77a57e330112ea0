"""
Detección de drift (diferencias entre estado aplicado y estado real).

Lee cada objeto a través de su provider (read) y lo compara con lo que
quedó registrado en el State Store. No escribe estado: el resultado se
entrega al planner, que fuerza Update/Replace donde corresponda.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from rich.console import Console

from forja.core.errors import DriftError, ProviderError
from forja.core.infra.contracts import CancelToken, OperationContext
from forja.core.infra.registry import ProviderRegistry
from forja.core.values import NodeId
from forja.core.runtime.state import StateDiff, StateStore


@dataclass
class DriftReport:
    diffs: List[StateDiff] = field(default_factory=list)
    missing: Set[NodeId] = field(default_factory=set)
    errors: List[ProviderError] = field(default_factory=list)

    def fields_for(self, node_id: NodeId) -> Set[str]:
        """Campos con drift de un nodo (sin contar la desaparición del objeto)."""
        return {d.field for d in self.diffs if d.resource_id == node_id and d.field != "id"}

    def warnings(self) -> List[DriftError]:
        return [DriftError(d.resource_id, d.field, d.desired, d.actual) for d in self.diffs]

    @property
    def clean(self) -> bool:
        return not self.diffs and not self.errors


def merge_diffs(diff_lists: List[List[StateDiff]]) -> List[StateDiff]:
    """Combina listas de diffs de varios providers y devuelve una sola lista."""
    out: List[StateDiff] = []
    seen: set = set()
    for lst in diff_lists:
        for d in lst:
            key = (d.resource_id, d.field)
            if key not in seen:
                seen.add(key)
                out.append(d)
    return out


def detect_drift(
    store: StateStore,
    registry: ProviderRegistry,
    timeout: Optional[float] = None,
    cancel: Optional[CancelToken] = None,
    console: Optional[Console] = None,
) -> DriftReport:
    """
    Refresca todo el estado contra los providers.

    Solo se comparan los campos que el provider devuelve en read();
    un objeto que ya no existe se reporta como `missing`.
    Los errores de lectura no son fatales: quedan en report.errors.
    """
    report = DriftReport()
    per_node: Dict[NodeId, List[StateDiff]] = {}
    cancel = cancel or CancelToken()

    for state in store.snapshot():
        if cancel.cancelled:
            break
        ctx = OperationContext(node=state.id, timeout=timeout, cancel=cancel)
        try:
            provider = registry.get(state.provider)
            actual = provider.read(state.id.type, state.resource_id, ctx)
        except ProviderError as e:
            if e.node is None:
                e.node = state.id
            report.errors.append(e)
            if console:
                console.print(f"[yellow]⚠️ No se pudo leer {state.id}: {e}[/yellow]")
            continue

        diffs = per_node.setdefault(state.id, [])
        if actual is None:
            report.missing.add(state.id)
            diffs.append(StateDiff(state.id, "id", state.resource_id, None, "error"))
            continue

        for name, expected in sorted(state.inputs.items()):
            if name in actual and actual[name] != expected:
                diffs.append(StateDiff(state.id, name, expected, actual[name], "warning"))

    report.diffs = merge_diffs(list(per_node.values()))
    return report
