"""
Errores del motor de reconciliación.

El core solo define excepciones; la CLI se encarga del formato de salida.
"""

from typing import Any, List, Optional


class ForjaError(Exception):
    """Error base de forja."""
    pass


class ConfigError(ForjaError):
    """Error de configuración (declaración mal formada, variable o referencia inexistente)."""
    pass


class ValidationError(ConfigError):
    """Error de validación de un documento contra su modelo."""
    pass


class CycleError(ConfigError):
    """El grafo de dependencias contiene al menos un ciclo."""

    def __init__(self, cycle: List[Any]):
        self.cycle = list(cycle)
        members = ", ".join(str(n) for n in self.cycle)
        super().__init__(f"Ciclo de dependencias entre: {members}")


class StateError(ForjaError):
    """Error al leer o escribir el documento de estado."""
    pass


class DestructiveChangeError(ForjaError):
    """El plan destruiría un recurso protegido o con datos sin confirmación explícita."""

    def __init__(self, message: str, nodes: Optional[List[Any]] = None):
        self.nodes = list(nodes or [])
        super().__init__(message)


class ProviderError(ForjaError):
    """Error delegado desde un provider (gcloud, kubectl, helm, etc.)."""

    def __init__(self, message: str, node: Any = None, cause: Optional[BaseException] = None):
        self.node = node
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.node is not None:
            return f"{self.node}: {base}"
        return base


class ProviderTimeoutError(ProviderError):
    """La operación del provider superó su timeout."""
    pass


class OperationCancelled(ProviderError):
    """La operación fue cancelada antes de terminar."""
    pass


class DriftError(ForjaError):
    """
    Divergencia entre el estado aplicado y el estado real.

    No es fatal: el planner la adjunta como advertencia y fuerza Update/Replace.
    """

    def __init__(self, node: Any, field: str, expected: Any, actual: Any):
        self.node = node
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(f"{node}: '{field}' cambió fuera de forja")
