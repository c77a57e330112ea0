"""
Modelos del stack declarativo.

- Modelos Pydantic: validan la forma de los documentos YAML tal como se escriben.
- Node / Lifecycle: representación inmutable de cada nodo ya parseado, con
  sus referencias extraídas; es lo que consumen grafo, planner y executor.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from forja.core.values import IDENTIFIER_RE, NodeId


# --- Documentos YAML ---

class LifecycleDecl(BaseModel):
    """Política de ciclo de vida declarada por recurso."""
    model_config = ConfigDict(extra="forbid")

    create_before_destroy: bool = Field(False, description="Replace crea el nuevo antes de borrar el viejo")
    prevent_destroy: bool = Field(False, description="Prohíbe destruir o reemplazar el recurso")
    ignore_changes: List[str] = Field(default_factory=list, description="Campos excluidos del diff")


class ResourceDecl(BaseModel):
    """Recurso tal como aparece en la lista `resources:`."""
    model_config = ConfigDict(extra="forbid")

    type: str = Field(..., description="Tipo de recurso (ej: google_container_cluster)")
    name: str = Field(..., description="Nombre lógico, único por tipo")
    provider: Optional[str] = Field(None, description="Provider; por defecto el prefijo del tipo")
    attributes: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list, description="Dependencias explícitas tipo.nombre")
    lifecycle: LifecycleDecl = Field(default_factory=LifecycleDecl)

    @field_validator("type", "name")
    @classmethod
    def check_identifier(cls, v: str) -> str:
        if not IDENTIFIER_RE.match(v):
            raise ValueError(f"'{v}' no es un identificador válido")
        return v


class VariableDecl(BaseModel):
    """Variable de entrada. Sin `default` es obligatoria."""
    model_config = ConfigDict(extra="forbid")

    type: Literal["string", "number", "bool", "list", "map"] = "string"
    default: Any = None
    description: Optional[str] = None
    sensitive: bool = False

    @property
    def required(self) -> bool:
        # `default: null` declarado cuenta como opcional
        return "default" not in self.model_fields_set


class OutputDecl(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: Any
    description: Optional[str] = None
    sensitive: bool = False


class StackDocument(BaseModel):
    """Un archivo YAML del stack; varios archivos se combinan en orden de nombre."""
    model_config = ConfigDict(extra="forbid")

    version: int = Field(1, description="Versión del esquema")
    variables: Dict[str, VariableDecl] = Field(default_factory=dict)
    resources: List[ResourceDecl] = Field(default_factory=list)
    outputs: Dict[str, OutputDecl] = Field(default_factory=dict)

    @field_validator("version")
    @classmethod
    def check_version(cls, v: int) -> int:
        if v != 1:
            raise ValueError(f"Versión de documento no soportada: {v}")
        return v


# --- Nodos parseados ---

@dataclass(frozen=True)
class Lifecycle:
    create_before_destroy: bool = False
    prevent_destroy: bool = False
    ignore_changes: Tuple[str, ...] = ()

    @classmethod
    def from_decl(cls, decl: LifecycleDecl) -> "Lifecycle":
        return cls(
            create_before_destroy=decl.create_before_destroy,
            prevent_destroy=decl.prevent_destroy,
            ignore_changes=tuple(decl.ignore_changes),
        )


@dataclass(frozen=True)
class Node:
    """Unidad declarada de estado deseado. Inmutable durante una evaluación."""
    id: NodeId
    attributes: Mapping[str, Any]
    references: FrozenSet[NodeId]
    provider: str
    depends_on: Tuple[NodeId, ...] = ()
    lifecycle: Lifecycle = field(default_factory=Lifecycle)
    index: int = 0

    def __post_init__(self):
        if not isinstance(self.attributes, MappingProxyType):
            object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def type(self) -> str:
        return self.id.type

    @property
    def name(self) -> str:
        return self.id.name

    @property
    def dependencies(self) -> FrozenSet[NodeId]:
        """Aristas entrantes: referencias implícitas + depends_on explícito."""
        return frozenset(self.references) | frozenset(self.depends_on)


@dataclass(frozen=True)
class OutputSpec:
    name: str
    value: Any
    sensitive: bool = False
    description: Optional[str] = None


def default_provider(resource_type: str) -> str:
    """google_compute_network → google; helm_release → helm."""
    return resource_type.split("_", 1)[0]
