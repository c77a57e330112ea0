"""
Valores declarados: escalares, listas, mapas y referencias a outputs de otros nodos.

Sintaxis de expresiones dentro de strings:
- ${var.nombre}            → variable, sustituida al cargar el stack
- ${tipo.nombre.atributo}  → referencia al output de otro nodo (se resuelve al planificar/aplicar)
- $${...}                  → literal "${...}" sin interpretar
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, NamedTuple, Optional, Set, Tuple, Union

from forja.core.errors import ConfigError


EXPRESSION_RE = re.compile(r"(?<!\$)\$\{\s*([^}]*?)\s*\}")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


class NodeId(NamedTuple):
    """Identidad estable de un nodo: (tipo, nombre)."""
    type: str
    name: str

    def __str__(self) -> str:
        return f"{self.type}.{self.name}"

    @classmethod
    def parse(cls, text: str) -> "NodeId":
        parts = text.strip().split(".")
        if len(parts) != 2 or not all(IDENTIFIER_RE.match(p) for p in parts):
            raise ConfigError(f"Identificador de nodo inválido: '{text}' (esperado tipo.nombre)")
        return cls(parts[0], parts[1])


@dataclass(frozen=True)
class Reference:
    """Referencia pendiente a (nodo, ruta de atributo)."""
    node: NodeId
    path: Tuple[str, ...]

    def __str__(self) -> str:
        return "${" + ".".join((str(self.node),) + self.path) + "}"


@dataclass(frozen=True)
class Template:
    """String con texto y referencias intercaladas; se renderiza cuando todo está resuelto."""
    parts: Tuple[Union[str, Reference], ...]

    def __str__(self) -> str:
        return "".join(str(p) for p in self.parts)


class _Unknown:
    """Valor que solo se conocerá después de aplicar el nodo referenciado."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(conocido tras aplicar)"

    __str__ = __repr__


UNKNOWN = _Unknown()


def parse_reference(expression: str) -> Reference:
    """Convierte 'tipo.nombre.attr[.sub...]' en Reference."""
    parts = [p for p in expression.split(".")]
    if len(parts) < 3 or not all(parts):
        raise ConfigError(
            f"Referencia inválida: '${{{expression}}}' (esperado tipo.nombre.atributo)"
        )
    node = NodeId.parse(".".join(parts[:2]))
    return Reference(node=node, path=tuple(parts[2:]))


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def parse_value(value: Any, variables: Dict[str, Any]) -> Any:
    """
    Recorre un valor declarado sustituyendo variables y convirtiendo
    expresiones de nodo en Reference/Template.
    """
    if isinstance(value, str):
        return _parse_string(value, variables)
    if isinstance(value, list):
        return [parse_value(v, variables) for v in value]
    if isinstance(value, dict):
        return {str(k): parse_value(v, variables) for k, v in value.items()}
    return value


def _lookup_variable(expression: str, variables: Dict[str, Any]) -> Any:
    name = expression[len("var."):]
    if name not in variables:
        raise ConfigError(f"Variable no declarada: '{name}'")
    return variables[name]


def _parse_string(text: str, variables: Dict[str, Any]) -> Any:
    matches = list(EXPRESSION_RE.finditer(text))
    if not matches:
        return text.replace("$${", "${")

    # Expresión única: conserva el tipo (número, bool, lista) de la variable
    if len(matches) == 1 and matches[0].span() == (0, len(text)):
        expression = matches[0].group(1)
        if expression.startswith("var."):
            return _lookup_variable(expression, variables)
        return parse_reference(expression)

    parts = []
    cursor = 0
    for match in matches:
        literal = text[cursor:match.start()].replace("$${", "${")
        if literal:
            parts.append(literal)
        expression = match.group(1)
        if expression.startswith("var."):
            parts.append(_stringify(_lookup_variable(expression, variables)))
        else:
            parts.append(parse_reference(expression))
        cursor = match.end()
    tail = text[cursor:].replace("$${", "${")
    if tail:
        parts.append(tail)

    if all(isinstance(p, str) for p in parts):
        return "".join(parts)
    return Template(parts=tuple(parts))


def iter_references(value: Any) -> Iterator[Reference]:
    """Itera todas las referencias contenidas en un valor (recursivo)."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Template):
        for part in value.parts:
            if isinstance(part, Reference):
                yield part
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_references(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_references(v)


def collect_references(value: Any) -> Set[NodeId]:
    return {ref.node for ref in iter_references(value)}


def lookup_path(attributes: Dict[str, Any], path: Tuple[str, ...], owner: Optional[NodeId] = None) -> Any:
    """Navega atributos por ruta (claves de mapa o índices de lista)."""
    current: Any = attributes
    for segment in path:
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            where = f" de {owner}" if owner else ""
            raise ConfigError(f"El atributo '{'.'.join(path)}' no existe en el estado{where}")
    return current


def resolve(value: Any, lookup: Callable[[Reference], Any]) -> Any:
    """
    Sustituye referencias usando lookup(ref). Si lookup devuelve UNKNOWN,
    el valor (o el template completo) queda UNKNOWN.
    """
    if isinstance(value, Reference):
        return lookup(value)
    if isinstance(value, Template):
        rendered = []
        for part in value.parts:
            if isinstance(part, Reference):
                resolved = lookup(part)
                if resolved is UNKNOWN:
                    return UNKNOWN
                rendered.append(_stringify(resolved))
            else:
                rendered.append(part)
        return "".join(rendered)
    if isinstance(value, dict):
        return {k: resolve(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve(v, lookup) for v in value]
    return value


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(contains_unknown(v) for v in value)
    return False


def to_display(value: Any) -> Any:
    """Versión serializable de un valor (referencias como texto ${...})."""
    if isinstance(value, (Reference, Template)):
        return str(value)
    if value is UNKNOWN:
        return repr(UNKNOWN)
    if isinstance(value, dict):
        return {k: to_display(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_display(v) for v in value]
    return value
