"""
Executor: aplica un ChangeSet a través de los providers.

Cada entrada arranca solo cuando todas las entradas de las que depende
ya confirmaron su estado. Tras cada operación exitosa el estado del nodo
se confirma en el State Store antes de liberar a sus dependientes.
Ante un fallo el recorrido se detiene: lo confirmado queda confirmado,
el nodo que falló y los no iniciados quedan intactos.
"""

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from rich.console import Console

from forja.core.errors import (
    ConfigError,
    DestructiveChangeError,
    ForjaError,
    OperationCancelled,
    ProviderError,
    ProviderTimeoutError,
)
from forja.core.infra.contracts import CancelToken, OperationContext
from forja.core.infra.registry import ProviderRegistry
from forja.core.models import Node
from forja.core.project.planner import Action, ChangeEntry, ChangeSet
from forja.core.values import NodeId, Reference, contains_unknown, lookup_path, resolve
from forja.core.runtime.settings import EngineSettings
from forja.core.runtime.state import AppliedState, StateStore


ACTION_LABELS = {
    Action.CREATE: "creando",
    Action.UPDATE: "actualizando",
    Action.REPLACE: "reemplazando",
    Action.DESTROY: "destruyendo",
}


@dataclass
class ApplyResult:
    """Resultado de un apply: orden real de ejecución y, si hubo, el fallo."""
    applied: List[ChangeEntry] = field(default_factory=list)
    started: List[ChangeEntry] = field(default_factory=list)
    skipped: List[ChangeEntry] = field(default_factory=list)
    failed: Optional[NodeId] = None
    error: Optional[ProviderError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Executor:
    """Recorre el ChangeSet invocando create/update/delete por nodo."""

    def __init__(
        self,
        store: StateStore,
        registry: ProviderRegistry,
        nodes: Sequence[Node] = (),
        settings: Optional[EngineSettings] = None,
        console: Optional[Console] = None,
        cancel: Optional[CancelToken] = None,
    ):
        self.store = store
        self.registry = registry
        self.nodes: Dict[NodeId, Node] = {n.id: n for n in nodes}
        self.settings = settings or EngineSettings()
        self.console = console
        self.cancel = cancel or CancelToken()

    def apply(self, changeset: ChangeSet, allow_destructive: bool = False) -> ApplyResult:
        """
        Aplica el ChangeSet.

        Args:
            changeset: Plan calculado por el Planner
            allow_destructive: Confirma Replace/Destroy de recursos con datos

        Returns:
            ApplyResult; si result.ok es False, result.error trae el nodo y la causa

        Raises:
            DestructiveChangeError si hay cambios destructivos sin confirmar (no se aplica nada)
        """
        destructive = changeset.destructive_entries
        if destructive and not allow_destructive:
            names = ", ".join(f"{e.node} ({e.action.value})" for e in destructive)
            raise DestructiveChangeError(
                f"Cambios con pérdida de datos sin confirmar: {names}",
                nodes=[e.node for e in destructive],
            )

        entries = changeset.changes
        dependencies = self._entry_dependencies(entries)
        result = ApplyResult()
        done: Set[int] = set()
        launched: Set[int] = set()
        running: Dict[Future, tuple] = {}
        parallelism = self.settings.parallelism

        pool = ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="forja")
        try:
            while True:
                if result.error is None and self.cancel.cancelled:
                    # El nodo en curso (si hay) es el que queda sin confirmar
                    in_flight = sorted(i for i, _ in running.values())
                    node = entries[in_flight[0]].node if in_flight else None
                    result.error = OperationCancelled("ejecución cancelada", node=node)
                    result.failed = node
                if result.error is None:
                    for i, entry in enumerate(entries):
                        if len(running) >= parallelism:
                            break
                        if i in launched or not dependencies[i] <= done:
                            continue
                        ctx = OperationContext(
                            node=entry.node,
                            timeout=self.settings.operation_timeout,
                            cancel=self.cancel,
                        )
                        launched.add(i)
                        result.started.append(entry)
                        self._report_start(entry)
                        running[pool.submit(self._run_entry, entry, ctx)] = (i, ctx)
                if not running:
                    break

                finished, _ = wait(list(running), timeout=self.settings.poll_interval, return_when=FIRST_COMPLETED)
                for future in finished:
                    i, ctx = running.pop(future)
                    entry = entries[i]
                    try:
                        future.result()
                    except ProviderError as e:
                        if e.node is None:
                            e.node = entry.node
                        self._fail(result, entry, e)
                    except ForjaError as e:
                        self._fail(result, entry, ProviderError(str(e), node=entry.node, cause=e))
                    except Exception as e:
                        self._fail(result, entry, ProviderError(f"error inesperado: {e}", node=entry.node, cause=e))
                    else:
                        done.add(i)
                        result.applied.append(entry)
                        self._report_done(entry)

                for future, (i, ctx) in list(running.items()):
                    if ctx.expired:
                        ctx.abandon()
                        running.pop(future)
                        self._fail(result, entries[i], ProviderTimeoutError(
                            f"sin respuesta tras {self.settings.operation_timeout:g}s", node=entries[i].node
                        ))
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        result.skipped = [e for i, e in enumerate(entries) if i not in launched]
        return result

    def _fail(self, result: ApplyResult, entry: ChangeEntry, error: ProviderError) -> None:
        if result.error is None:
            result.error = error
            result.failed = entry.node
        if self.console:
            self.console.print(f"[red]✘ {error}[/red]")

    def _report_start(self, entry: ChangeEntry) -> None:
        if self.console:
            label = ACTION_LABELS.get(entry.action, entry.action.value)
            self.console.print(f"[cyan]→ {entry.node}: {label}...[/cyan]")

    def _report_done(self, entry: ChangeEntry) -> None:
        if self.console:
            self.console.print(f"[green]✔ {entry.node}: {entry.action.value} completado[/green]")

    def _entry_dependencies(self, entries: List[ChangeEntry]) -> List[Set[int]]:
        """
        Dependencias entre posiciones del ChangeSet:
        - Destroy de un nodo eliminado espera a los Destroy de quienes dependían
          de él y a los Update/Replace de nodos declarados que lo referenciaban.
        - Destroy de un objeto depuesto espera al Replace del nodo y a los
          cambios de sus dependientes declarados (ya apuntan al reemplazo).
        - Create/Update/Replace esperan a sus dependencias.
        - Create además espera a los Destroy de nodos eliminados, salvo que
          ese Destroy ya dependa de él.
        """
        position = {e.node: i for i, e in enumerate(entries) if e.action is not Action.DESTROY}
        destroy_position = {
            e.node: i for i, e in enumerate(entries)
            if e.action is Action.DESTROY and e.deposed_id is None
        }
        stored_deps = {s.id: set(s.dependencies) for s in self.store.snapshot()}
        last_deposed: Dict[NodeId, int] = {}

        result: List[Set[int]] = []
        for i, entry in enumerate(entries):
            if entry.action is not Action.DESTROY:
                node = self._node(entry.node)
                result.append({position[d] for d in node.dependencies if d in position})
            elif entry.deposed_id is not None:
                deps = {
                    position[other.id] for other in self.nodes.values()
                    if entry.node in other.dependencies and other.id in position
                }
                if entry.node in position:
                    deps.add(position[entry.node])
                if entry.node in last_deposed:
                    deps.add(last_deposed[entry.node])
                last_deposed[entry.node] = i
                result.append(deps)
            else:
                deps = set()
                for other, other_deps in stored_deps.items():
                    if entry.node not in other_deps:
                        continue
                    if other in destroy_position:
                        deps.add(destroy_position[other])
                    elif other in position:
                        deps.add(position[other])
                result.append(deps)

        removed = sorted(destroy_position.values())
        for i, entry in enumerate(entries):
            if entry.action is not Action.CREATE:
                continue
            for d in removed:
                if not _reaches(result, d, i):
                    result[i].add(d)
        return result

    def _node(self, node_id: NodeId) -> Node:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise ConfigError(f"El ChangeSet incluye un nodo no declarado: {node_id}")

    def _resolve(self, node: Node) -> Dict[str, Any]:
        """Resuelve referencias con el estado ya confirmado (de esta u otra ejecución)."""
        def lookup(ref: Reference) -> Any:
            state = self.store.get(ref.node)
            if state is None:
                raise ConfigError(f"{node.id}: referencia sin resolver {ref} ({ref.node} no está aplicado)")
            return lookup_path(state.attributes, ref.path, owner=ref.node)

        attributes = resolve(dict(node.attributes), lookup)
        if contains_unknown(attributes):
            raise ConfigError(f"{node.id}: quedan valores sin resolver")
        return attributes

    def _run_entry(self, entry: ChangeEntry, ctx: OperationContext) -> None:
        if entry.action is Action.DESTROY:
            self._destroy(entry, ctx)
            return

        node = self._node(entry.node)
        provider = self.registry.get(node.provider)
        attributes = self._resolve(node)
        previous = self.store.get(node.id)

        if entry.action is Action.CREATE:
            outputs = provider.create(node.type, attributes, ctx)
            self._commit(node, attributes, outputs, previous, ctx)
        elif entry.action is Action.UPDATE:
            if previous is None:
                raise ProviderError("no hay estado previo para actualizar", node=node.id)
            outputs = {"id": previous.resource_id, **(provider.update(node.type, previous.resource_id, attributes, ctx) or {})}
            self._commit(node, attributes, outputs, previous, ctx)
        elif entry.action is Action.REPLACE:
            self._replace(node, provider, attributes, previous, entry, ctx)

    def _replace(self, node, provider, attributes, previous, entry, ctx) -> None:
        old_id = previous.resource_id if previous else None
        if entry.create_before_destroy:
            # El objeto anterior queda depuesto; su Destroy es una entrada aparte
            # que espera a que los dependientes apunten al reemplazo.
            outputs = provider.create(node.type, attributes, ctx)
            deposed = list(previous.deposed) if previous else []
            if old_id and old_id not in deposed:
                deposed.append(old_id)
            self._commit(node, attributes, outputs, previous, ctx, deposed=deposed)
            return

        if old_id:
            provider.delete(node.type, old_id, ctx)
            with ctx.commit_guard():
                self.store.delete(node.id)
        outputs = provider.create(node.type, attributes, ctx)
        self._commit(node, attributes, outputs, previous, ctx)

    def _destroy(self, entry: ChangeEntry, ctx: OperationContext) -> None:
        state = self.store.get(entry.node)
        if entry.deposed_id is not None:
            provider_name = state.provider if state else self._node(entry.node).provider
            self.registry.get(provider_name).delete(entry.node.type, entry.deposed_id, ctx)
            if state is not None and entry.deposed_id in state.deposed:
                state.deposed.remove(entry.deposed_id)
                with ctx.commit_guard():
                    self.store.put(entry.node, state)
            return
        if state is None:
            return

        provider = self.registry.get(state.provider)
        # Los objetos depuestos se borran antes que el nodo
        for deposed_id in list(state.deposed):
            provider.delete(entry.node.type, deposed_id, ctx)
            state.deposed.remove(deposed_id)
            with ctx.commit_guard():
                self.store.put(entry.node, state)
        provider.delete(entry.node.type, state.resource_id, ctx)
        with ctx.commit_guard():
            self.store.delete(entry.node)

    def _commit(
        self,
        node: Node,
        inputs: Dict[str, Any],
        outputs: Optional[Dict[str, Any]],
        previous: Optional[AppliedState],
        ctx: OperationContext,
        deposed: Optional[List[str]] = None,
    ) -> AppliedState:
        outputs = dict(outputs or {})
        if not outputs.get("id"):
            raise ProviderError("el provider no devolvió 'id'", node=node.id)
        state = AppliedState(
            id=node.id,
            provider=node.provider,
            attributes={**inputs, **outputs},
            inputs=inputs,
            dependencies=sorted(node.dependencies, key=str),
            generation=(previous.generation + 1) if previous else 1,
            index=node.index,
            deposed=list(deposed if deposed is not None else (previous.deposed if previous else [])),
        )
        with ctx.commit_guard():
            self.store.put(node.id, state)
        return state


def _reaches(dependencies: List[Set[int]], start: int, target: int) -> bool:
    """True si `start` depende (directa o transitivamente) de `target`."""
    seen: Set[int] = set()
    stack = [start]
    while stack:
        current = stack.pop()
        if current == target:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(dependencies[current])
    return False
