"""
Provider en memoria (modo --mock y tests).

Guarda los objetos en un dict y genera outputs deterministas por tipo.
Permite inyectar fallos (fail_on), demoras (delays) y drift (tamper / forget).
"""

import itertools
import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from forja.core.errors import OperationCancelled, ProviderError, ProviderTimeoutError
from forja.core.infra.base import BaseProvider
from forja.core.infra.contracts import OperationContext, ResourceSchema
from forja.core.values import NodeId
from forja.providers.schemas import SCHEMAS


# Outputs calculados por tipo: f(atributos, secuencia) → dict
_COMPUTED: Dict[str, Callable[[Mapping[str, Any], int], Dict[str, Any]]] = {
    "google_compute_network": lambda a, n: {"self_link": f"mock://networks/{a.get('name')}"},
    "google_compute_subnetwork": lambda a, n: {
        "self_link": f"mock://subnetworks/{a.get('name')}",
        "gateway_address": f"10.0.{n % 250}.1",
    },
    "google_compute_router": lambda a, n: {"self_link": f"mock://routers/{a.get('name')}"},
    "google_compute_address": lambda a, n: {"address": f"203.0.113.{n % 250 + 1}"},
    "google_container_cluster": lambda a, n: {
        "endpoint": f"10.10.0.{n % 250 + 1}",
        "ca_certificate": "bW9jay1jYQ==",
        "master_version": "1.29.0-mock",
    },
    "google_container_node_pool": lambda a, n: {"instance_group_urls": [f"mock://igm/{a.get('name')}-{n}"]},
    "google_sql_database_instance": lambda a, n: {
        "connection_name": f"{a.get('project')}:{a.get('region')}:{a.get('name')}",
        "private_ip_address": f"10.20.0.{n % 250 + 1}",
    },
    "google_secret_manager_secret_version": lambda a, n: {"version": str(n)},
    "google_storage_bucket": lambda a, n: {"url": f"gs://{a.get('name')}/"},
    "google_compute_disk": lambda a, n: {"self_link": f"mock://disks/{a.get('name')}"},
    "kubernetes_service": lambda a, n: {"cluster_ip": f"10.30.0.{n % 250 + 1}"},
    "helm_release": lambda a, n: {"revision": 1, "status": "deployed"},
}

SLEEP_STEP = 0.01


class InMemoryProvider(BaseProvider):
    """
    Provider simulado: cada create asigna un id nuevo.

    Args:
        name: Nombre con el que se registra (google, kubernetes, helm o mock)
        schemas: Tabla de esquemas; por defecto la tabla compartida
        fail_on: {NodeId: operación} donde operación es create/update/delete/read o "*"
        delays: {NodeId: segundos} de demora por operación
    """

    def __init__(
        self,
        name: str = "mock",
        schemas: Optional[Mapping[str, ResourceSchema]] = None,
        fail_on: Optional[Mapping[NodeId, str]] = None,
        delays: Optional[Mapping[NodeId, float]] = None,
    ):
        super().__init__(SCHEMAS if schemas is None else schemas)
        self.name = name
        self.fail_on: Dict[NodeId, str] = dict(fail_on or {})
        self.delays: Dict[NodeId, float] = dict(delays or {})
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Optional[NodeId]]] = []
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    # --- Inyección de escenarios ---

    def seed(self, resource_type: str, resource_id: str, attributes: Mapping[str, Any]) -> None:
        """Registra un objeto existente (ej: reconstruir desde el estado en modo mock)."""
        with self._lock:
            self.objects[resource_id] = {"type": resource_type, "attributes": dict(attributes)}

    def tamper(self, resource_id: str, **changes: Any) -> None:
        """Modifica un objeto por fuera del motor (drift)."""
        with self._lock:
            self.objects[resource_id]["attributes"].update(changes)

    def forget(self, resource_id: str) -> None:
        """Elimina un objeto por fuera del motor."""
        with self._lock:
            self.objects.pop(resource_id, None)

    def ids(self, resource_type: Optional[str] = None) -> List[str]:
        with self._lock:
            return [i for i, o in self.objects.items() if resource_type in (None, o["type"])]

    def operations(self, kind: Optional[str] = None) -> List[Tuple[str, Optional[NodeId]]]:
        """Llamadas registradas, opcionalmente filtradas por operación."""
        with self._lock:
            return [c for c in self.calls if kind in (None, c[0])]

    # --- Contrato Provider ---

    def create(self, resource_type: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        self._enter("create", resource_type, ctx)
        n = next(self._sequence)
        label = attributes.get("name") or (ctx.node.name if ctx.node else resource_type)
        resource_id = f"{resource_type}/{label}-{n}"
        computed = _COMPUTED.get(resource_type, lambda a, i: {})(attributes, n)
        outputs = {"id": resource_id, **computed}
        self.seed(resource_type, resource_id, {**attributes, **outputs})
        return outputs

    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        self._enter("update", resource_type, ctx)
        with self._lock:
            obj = self.objects.get(resource_id)
            if obj is None:
                raise ProviderError(f"{resource_id} no existe", node=ctx.node)
            computed = {k: v for k, v in obj["attributes"].items() if k not in attributes}
            if resource_type == "helm_release":
                computed["revision"] = int(computed.get("revision", 1)) + 1
            obj["attributes"] = {**attributes, **computed, "id": resource_id}
            return {k: v for k, v in computed.items() if k != "id"}

    def delete(self, resource_type: str, resource_id: str, ctx: OperationContext) -> None:
        self._enter("delete", resource_type, ctx)
        with self._lock:
            if self.objects.pop(resource_id, None) is None:
                raise ProviderError(f"{resource_id} no existe", node=ctx.node)

    def read(self, resource_type: str, resource_id: str, ctx: OperationContext) -> Optional[Dict[str, Any]]:
        self._enter("read", resource_type, ctx)
        with self._lock:
            obj = self.objects.get(resource_id)
            return dict(obj["attributes"]) if obj else None

    def _enter(self, operation: str, resource_type: str, ctx: OperationContext) -> None:
        self.schema(resource_type)
        with self._lock:
            self.calls.append((operation, ctx.node))
        self._sleep(ctx)
        if ctx.node is not None and self.fail_on.get(ctx.node) in (operation, "*"):
            raise ProviderError(f"fallo simulado en {operation}", node=ctx.node)

    def _sleep(self, ctx: OperationContext) -> None:
        remaining = self.delays.get(ctx.node, 0.0) if ctx.node is not None else 0.0
        while remaining > 0:
            if ctx.cancel.wait(min(SLEEP_STEP, remaining)):
                raise OperationCancelled("cancelado durante la operación", node=ctx.node)
            if ctx.expired:
                raise ProviderTimeoutError(f"superó {ctx.timeout:g}s", node=ctx.node)
            remaining -= SLEEP_STEP


def seed_from_state(providers: Iterable[InMemoryProvider], states: Iterable[Any]) -> None:
    """Reconstruye los objetos simulados a partir del estado persistido (modo --mock)."""
    by_name = {p.name: p for p in providers}
    for state in states:
        provider = by_name.get(state.provider)
        if provider is None:
            continue
        provider.seed(state.id.type, state.resource_id, state.attributes)
        for deposed_id in state.deposed:
            provider.seed(state.id.type, deposed_id, {"id": deposed_id})
