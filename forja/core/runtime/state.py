"""
State Store: último estado aplicado de cada nodo.

Documento JSON versionado:
    {"version": 2, "serial": n, "lineage": "...", "resources": [ {...}, ... ]}

La versión 1 (resources como mapa "tipo.nombre" → {attributes, generation})
se actualiza al leer. Solo el Executor escribe (put/delete); Planner y
detector de drift solo leen.
"""

import copy
import json
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from forja.core.errors import StateError
from forja.core.values import NodeId


STATE_VERSION = 2


class StateDiff:
    """Diferencia entre estado aplicado y estado real (agnóstico de provider)."""
    def __init__(
        self,
        resource_id: NodeId,
        field: str,
        desired: Any,
        actual: Any,
        severity: str = "warning"
    ):
        self.resource_id = resource_id
        self.field = field
        self.desired = desired
        self.actual = actual
        self.severity = severity  # "error", "warning", "info"

    def __repr__(self) -> str:
        return f"StateDiff({self.resource_id}, {self.field!r}, {self.severity})"


@dataclass
class AppliedState:
    """Último estado conocido de un nodo tras un apply exitoso."""
    id: NodeId
    provider: str
    attributes: Dict[str, Any]
    inputs: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[NodeId] = field(default_factory=list)
    generation: int = 1
    index: int = 0
    deposed: List[str] = field(default_factory=list)

    @property
    def resource_id(self) -> str:
        """Identificador del objeto remoto devuelto por el provider."""
        return str(self.attributes.get("id", ""))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.id.type,
            "name": self.id.name,
            "provider": self.provider,
            "generation": self.generation,
            "index": self.index,
            "dependencies": [str(d) for d in self.dependencies],
            "deposed": list(self.deposed),
            "inputs": self.inputs,
            "attributes": self.attributes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppliedState":
        try:
            return cls(
                id=NodeId(data["type"], data["name"]),
                provider=data["provider"],
                attributes=dict(data.get("attributes") or {}),
                inputs=dict(data.get("inputs") or {}),
                dependencies=[NodeId.parse(d) for d in data.get("dependencies", [])],
                generation=int(data.get("generation", 1)),
                index=int(data.get("index", 0)),
                deposed=list(data.get("deposed", [])),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise StateError(f"Entrada de estado inválida: {e}")


def upgrade_document(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Lleva un documento de estado antiguo al esquema actual."""
    version = doc.get("version", 1)
    if not isinstance(version, int):
        raise StateError(f"Versión de estado inválida: {version!r}")
    if version > STATE_VERSION:
        raise StateError(
            f"El estado usa el esquema v{version}; esta versión de forja solo lee hasta v{STATE_VERSION}"
        )
    if version == STATE_VERSION:
        return doc

    # v1: {"resources": {"tipo.nombre": {"provider", "attributes", "generation"}}}
    resources = []
    for index, (key, entry) in enumerate((doc.get("resources") or {}).items()):
        node_id = NodeId.parse(key)
        attributes = dict(entry.get("attributes") or {})
        resources.append({
            "type": node_id.type,
            "name": node_id.name,
            "provider": entry.get("provider") or node_id.type.split("_", 1)[0],
            "generation": entry.get("generation", 1),
            "index": index,
            "dependencies": entry.get("dependencies", []),
            "deposed": [],
            # v1 no guardaba inputs: se comparan contra los atributos sin el id remoto
            "inputs": {k: v for k, v in attributes.items() if k != "id"},
            "attributes": attributes,
        })
    return {
        "version": STATE_VERSION,
        "serial": doc.get("serial", 0),
        "lineage": doc.get("lineage") or uuid.uuid4().hex,
        "resources": resources,
    }


class StateStore:
    """
    Almacén de AppliedState por NodeId.

    Con `path` persiste cada escritura de forma atómica; sin `path` vive en memoria.
    Los accesos se serializan por entrada (lock por nodo), de modo que
    escrituras a nodos distintos pueden ocurrir en paralelo.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self.serial = 0
        self.lineage = uuid.uuid4().hex
        self._entries: Dict[NodeId, AppliedState] = {}
        self._locks: Dict[NodeId, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._write_lock = threading.Lock()
        if self.path and self.path.exists():
            self._load()

    def _entry_lock(self, node_id: NodeId) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(node_id)
            if lock is None:
                lock = self._locks[node_id] = threading.Lock()
            return lock

    def get(self, node_id: NodeId) -> Optional[AppliedState]:
        with self._entry_lock(node_id):
            state = self._entries.get(node_id)
            return copy.deepcopy(state) if state else None

    def put(self, node_id: NodeId, state: AppliedState) -> None:
        if state.id != node_id:
            raise StateError(f"El estado de {state.id} no puede guardarse como {node_id}")
        with self._entry_lock(node_id):
            with self._write_lock:
                entries = dict(self._entries)
                entries[node_id] = copy.deepcopy(state)
                self._commit(entries)

    def delete(self, node_id: NodeId) -> None:
        with self._entry_lock(node_id):
            with self._write_lock:
                if node_id not in self._entries:
                    return
                entries = dict(self._entries)
                del entries[node_id]
                self._commit(entries)

    def snapshot(self) -> List[AppliedState]:
        """Copia ordenada (por índice de declaración y luego id) de todo el estado."""
        with self._write_lock:
            states = [copy.deepcopy(s) for s in self._entries.values()]
        return sorted(states, key=lambda s: (s.index, str(s.id)))

    def ids(self) -> List[NodeId]:
        return [s.id for s in self.snapshot()]

    def __contains__(self, node_id: NodeId) -> bool:
        return node_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def to_document(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "serial": self.serial,
            "lineage": self.lineage,
            "resources": [s.to_dict() for s in self.snapshot()],
        }

    def _load(self) -> None:
        try:
            with open(self.path, "r") as f:
                doc = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(f"Estado corrupto en {self.path}: {e}")
        except OSError as e:
            raise StateError(f"No se pudo leer el estado {self.path}: {e}")
        if not isinstance(doc, dict):
            raise StateError(f"Estado inválido en {self.path}")
        doc = upgrade_document(doc)
        self.serial = int(doc.get("serial", 0))
        self.lineage = doc.get("lineage") or self.lineage
        for entry in doc.get("resources", []):
            state = AppliedState.from_dict(entry)
            self._entries[state.id] = state

    def _commit(self, entries: Dict[NodeId, AppliedState]) -> None:
        # Llamar con _write_lock tomado; la memoria cambia solo si el disco ya cambió
        serial = self.serial + 1
        if self.path:
            self._persist(entries, serial)
        self._entries = entries
        self.serial = serial

    def _persist(self, entries: Dict[NodeId, AppliedState], serial: int) -> None:
        resources = sorted(entries.values(), key=lambda s: (s.index, str(s.id)))
        doc = {
            "version": STATE_VERSION,
            "serial": serial,
            "lineage": self.lineage,
            "resources": [s.to_dict() for s in resources],
        }
        tmp = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".state-", suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                json.dump(doc, f, indent=2, sort_keys=False, default=str)
                f.write("\n")
            os.replace(tmp, self.path)
        except OSError as e:
            if tmp and os.path.exists(tmp):
                os.unlink(tmp)
            raise StateError(f"No se pudo escribir el estado {self.path}: {e}")
