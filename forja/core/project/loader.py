"""
Loader del stack declarativo.
Carga los YAML de un directorio, los valida con Pydantic y produce Nodes.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

import yaml
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console

from forja.core.errors import ConfigError, ValidationError
from forja.core.models import (
    Lifecycle,
    Node,
    OutputSpec,
    StackDocument,
    VariableDecl,
    default_provider,
)
from forja.core.values import NodeId, collect_references, parse_value


DEFAULT_VAR_FILE = "forja.vars.yaml"
VAR_FILE_SUFFIX = ".vars.yaml"
ENV_VAR_PREFIX = "FORJA_VAR_"


@dataclass
class Stack:
    """Resultado de cargar un stack: nodos en orden de declaración, variables y outputs."""
    source: Path
    nodes: List[Node]
    variables: Dict[str, Any] = field(default_factory=dict)
    sensitive_variables: Set[str] = field(default_factory=set)
    outputs: Dict[str, OutputSpec] = field(default_factory=dict)

    def node(self, node_id: NodeId) -> Node:
        for n in self.nodes:
            if n.id == node_id:
                return n
        raise ConfigError(f"Nodo no declarado: {node_id}")

    @property
    def ids(self) -> List[NodeId]:
        return [n.id for n in self.nodes]


def _coerce(name: str, decl: VariableDecl, value: Any) -> Any:
    """Convierte el valor recibido (a menudo string de CLI/entorno) al tipo declarado."""
    if value is None:
        return None
    kind = decl.type
    if kind == "string":
        if isinstance(value, (dict, list)):
            raise ConfigError(f"La variable '{name}' debe ser string")
        return value if isinstance(value, str) else str(value)
    if kind == "number":
        if isinstance(value, bool):
            raise ConfigError(f"La variable '{name}' debe ser numérica")
        if isinstance(value, (int, float)):
            return value
        try:
            text = str(value).strip()
            return int(text) if text.lstrip("-").isdigit() else float(text)
        except ValueError:
            raise ConfigError(f"La variable '{name}' debe ser numérica (recibido: {value!r})")
    if kind == "bool":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("true", "1", "yes", "si", "sí"):
            return True
        if text in ("false", "0", "no"):
            return False
        raise ConfigError(f"La variable '{name}' debe ser booleana (recibido: {value!r})")
    if isinstance(value, str):
        # list/map desde CLI o entorno: se aceptan en sintaxis YAML
        try:
            value = yaml.safe_load(value)
        except yaml.YAMLError as e:
            raise ConfigError(f"La variable '{name}' no es YAML válido: {e}")
    expected = list if kind == "list" else dict
    if not isinstance(value, expected):
        raise ConfigError(f"La variable '{name}' debe ser de tipo {kind}")
    return value


class StackLoader:
    """Carga y combina los documentos de un directorio de stack"""

    def __init__(self, stack_dir: Path, console: Optional[Console] = None):
        self.stack_dir = Path(stack_dir)
        self.console = console

    def document_files(self) -> List[Path]:
        if not self.stack_dir.is_dir():
            raise ConfigError(f"Directorio de stack no encontrado: {self.stack_dir}")
        files = [
            f for f in sorted(self.stack_dir.glob("*.yaml"))
            if not f.name.endswith(VAR_FILE_SUFFIX)
        ]
        if not files:
            raise ConfigError(f"No hay documentos *.yaml en {self.stack_dir}")
        return files

    def load_documents(self) -> List[Tuple[Path, StackDocument]]:
        documents = []
        for path in self.document_files():
            try:
                with open(path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"{path.name}: YAML inválido: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"{path.name}: el documento debe ser un mapa")
            try:
                documents.append((path, StackDocument(**data)))
            except PydanticValidationError as e:
                raise ValidationError(f"{path.name}: {e}")
        return documents

    def load(
        self,
        var_values: Optional[Mapping[str, Any]] = None,
        var_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Stack:
        """
        Carga el stack completo.

        Args:
            var_values: Valores explícitos (--var); máxima precedencia
            var_file: Archivo YAML de valores; por defecto forja.vars.yaml si existe
            environ: Entorno para FORJA_VAR_<nombre> (por defecto os.environ)

        Returns:
            Stack con nodos, variables resueltas y outputs
        """
        documents = self.load_documents()

        declarations: Dict[str, VariableDecl] = {}
        for path, doc in documents:
            for name, decl in doc.variables.items():
                if name in declarations:
                    raise ConfigError(f"{path.name}: variable '{name}' declarada dos veces")
                declarations[name] = decl

        variables = self._resolve_variables(declarations, var_values or {}, var_file, environ)
        sensitive = {name for name, decl in declarations.items() if decl.sensitive}

        nodes: List[Node] = []
        seen: Set[NodeId] = set()
        outputs: Dict[str, OutputSpec] = {}
        for path, doc in documents:
            for decl in doc.resources:
                node_id = NodeId(decl.type, decl.name)
                if node_id in seen:
                    raise ConfigError(f"{path.name}: recurso duplicado {node_id}")
                seen.add(node_id)
                attributes = parse_value(decl.attributes, variables)
                nodes.append(Node(
                    id=node_id,
                    attributes=attributes,
                    references=frozenset(collect_references(attributes)),
                    provider=decl.provider or default_provider(decl.type),
                    depends_on=tuple(NodeId.parse(d) for d in decl.depends_on),
                    lifecycle=Lifecycle.from_decl(decl.lifecycle),
                    index=len(nodes),
                ))
            for name, out in doc.outputs.items():
                if name in outputs:
                    raise ConfigError(f"{path.name}: output '{name}' declarado dos veces")
                outputs[name] = OutputSpec(
                    name=name,
                    value=parse_value(out.value, variables),
                    sensitive=out.sensitive,
                    description=out.description,
                )

        if self.console:
            self.console.print(
                f"[green]✔ Stack cargado: {self.stack_dir.name} "
                f"({len(nodes)} recursos, {len(outputs)} outputs)[/green]"
            )
        return Stack(
            source=self.stack_dir,
            nodes=nodes,
            variables=variables,
            sensitive_variables=sensitive,
            outputs=outputs,
        )

    def _resolve_variables(
        self,
        declarations: Dict[str, VariableDecl],
        explicit: Mapping[str, Any],
        var_file: Optional[Path],
        environ: Optional[Mapping[str, str]],
    ) -> Dict[str, Any]:
        """Precedencia: default < archivo de valores < FORJA_VAR_* < --var"""
        values: Dict[str, Any] = {
            name: decl.default for name, decl in declarations.items() if not decl.required
        }

        file_values = self._read_var_file(var_file)
        for name, value in file_values.items():
            if name not in declarations:
                if self.console:
                    self.console.print(f"[yellow]⚠️ Valor para variable no declarada ignorado: {name}[/yellow]")
                continue
            values[name] = value

        env = os.environ if environ is None else environ
        for key, value in env.items():
            if key.startswith(ENV_VAR_PREFIX):
                name = key[len(ENV_VAR_PREFIX):]
                if name in declarations:
                    values[name] = value

        for name, value in explicit.items():
            if name not in declarations:
                raise ConfigError(f"Variable no declarada: '{name}'")
            values[name] = value

        missing = [name for name, decl in declarations.items() if name not in values]
        if missing:
            raise ConfigError(f"Faltan valores para variables obligatorias: {', '.join(sorted(missing))}")

        return {name: _coerce(name, declarations[name], value) for name, value in values.items()}

    def _read_var_file(self, var_file: Optional[Path]) -> Dict[str, Any]:
        if var_file is None:
            candidate = self.stack_dir / DEFAULT_VAR_FILE
            if not candidate.exists():
                return {}
            var_file = candidate
        var_file = Path(var_file)
        if not var_file.exists():
            raise ConfigError(f"Archivo de variables no encontrado: {var_file}")
        try:
            with open(var_file, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{var_file.name}: YAML inválido: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"{var_file.name}: el archivo de variables debe ser un mapa")
        return data
