"""
Contratos que deben implementar los providers de infraestructura.

El core solo define interfaces; la implementación vive en forja/providers/*.
Un provider se implementa una vez por sistema externo (nube, API server de
Kubernetes, instalador de charts) y despacha por tipo de recurso.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterator, Optional, Protocol

from forja.core.errors import ProviderTimeoutError
from forja.core.values import NodeId


@dataclass(frozen=True)
class ResourceSchema:
    """Lo que el motor necesita saber de un tipo de recurso."""
    immutable: FrozenSet[str] = frozenset()  # Cambiar cualquiera fuerza Replace
    data_bearing: bool = False  # Replace/Destroy pierde datos: requiere confirmación
    sensitive: FrozenSet[str] = frozenset()  # Outputs que no se muestran por defecto
    create_before_destroy: bool = False  # Replace del tipo: crear antes de borrar


class CancelToken:
    """Señal de cancelación compartida entre el executor y las llamadas a providers."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Duerme hasta `seconds` o hasta la cancelación; True si fue cancelado."""
        return self._event.wait(seconds)


@dataclass
class OperationContext:
    """Contexto de una llamada a provider: nodo, timeout y cancelación."""
    node: Optional[NodeId] = None
    timeout: Optional[float] = None
    cancel: CancelToken = field(default_factory=CancelToken)
    started: float = field(default_factory=time.monotonic)
    _abandoned: bool = field(default=False, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel.cancelled

    @property
    def remaining(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return max(0.0, self.timeout - (time.monotonic() - self.started))

    @property
    def expired(self) -> bool:
        return self.timeout is not None and time.monotonic() - self.started > self.timeout

    def abandon(self) -> None:
        """Marca la operación como vencida: ya no podrá confirmar estado."""
        with self._lock:
            self._abandoned = True

    @contextmanager
    def commit_guard(self) -> Iterator[None]:
        """Sección en la que se confirma estado; falla si la operación fue abandonada."""
        with self._lock:
            if self._abandoned:
                raise ProviderTimeoutError("operación abandonada por timeout", node=self.node)
            yield


class Provider(Protocol):
    """
    Contrato mínimo de un provider.
    Los fallos se señalan con ProviderError (o subclases).
    """

    @property
    def name(self) -> str:
        """Identificador del provider (ej: google, kubernetes, helm)."""
        ...

    def schema(self, resource_type: str) -> ResourceSchema:
        """Campos inmutables / sensibles del tipo. ConfigError si no lo soporta."""
        ...

    def create(self, resource_type: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        """Crea el objeto; devuelve outputs (debe incluir 'id')."""
        ...

    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        """Actualiza en sitio; devuelve outputs."""
        ...

    def delete(self, resource_type: str, resource_id: str, ctx: OperationContext) -> None:
        ...

    def read(self, resource_type: str, resource_id: str, ctx: OperationContext) -> Optional[Dict[str, Any]]:
        """Estado real del objeto o None si ya no existe."""
        ...
