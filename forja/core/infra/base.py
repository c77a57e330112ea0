"""
Base opcional para providers: tabla de esquemas y validaciones comunes.

Los providers pueden heredar de aquí o implementar solo el contrato (Protocol).
"""

from typing import Any, Dict, Mapping, Optional

from forja.core.errors import ConfigError, ProviderError
from forja.core.infra.contracts import OperationContext, ResourceSchema


class BaseProvider:
    """Base opcional para providers; no obligatorio usar herencia."""

    name: str = "base"

    def __init__(self, schemas: Optional[Mapping[str, ResourceSchema]] = None):
        self.schemas: Dict[str, ResourceSchema] = dict(schemas or {})

    def supports(self, resource_type: str) -> bool:
        return resource_type in self.schemas

    def schema(self, resource_type: str) -> ResourceSchema:
        try:
            return self.schemas[resource_type]
        except KeyError:
            raise ConfigError(f"El provider '{self.name}' no soporta el tipo '{resource_type}'")

    def read(self, resource_type: str, resource_id: str, ctx: OperationContext) -> Optional[Dict[str, Any]]:
        """Por defecto: sin lectura remota (no detecta drift)."""
        return None

    @staticmethod
    def require(attributes: Mapping[str, Any], key: str, ctx: Optional[OperationContext] = None) -> Any:
        value = attributes.get(key)
        if value in (None, ""):
            raise ProviderError(f"falta el atributo obligatorio '{key}'", node=ctx.node if ctx else None)
        return value
