"""
Outputs del stack: valores derivados del estado aplicado.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from forja.core.errors import ConfigError
from forja.core.models import OutputSpec
from forja.core.values import UNKNOWN, Reference, contains_unknown, lookup_path, resolve
from forja.core.runtime.state import StateStore


SENSITIVE_PLACEHOLDER = "(sensitive)"


@dataclass(frozen=True)
class OutputValue:
    name: str
    value: Any
    sensitive: bool = False
    known: bool = True
    description: Optional[str] = None

    def display(self, show_sensitive: bool = False) -> Any:
        if not self.known:
            return repr(UNKNOWN)
        if self.sensitive and not show_sensitive:
            return SENSITIVE_PLACEHOLDER
        return self.value


def evaluate_outputs(outputs: Dict[str, OutputSpec], store: StateStore) -> List[OutputValue]:
    """
    Resuelve cada output contra el estado aplicado.
    Un output que referencia nodos aún no aplicados queda como no conocido.
    """
    def lookup(ref: Reference) -> Any:
        state = store.get(ref.node)
        if state is None:
            return UNKNOWN
        try:
            return lookup_path(state.attributes, ref.path, owner=ref.node)
        except ConfigError:
            return UNKNOWN

    values = []
    for name in sorted(outputs):
        spec = outputs[name]
        value = resolve(spec.value, lookup)
        known = not contains_unknown(value)
        values.append(OutputValue(
            name=name,
            value=value if known else None,
            sensitive=spec.sensitive,
            known=known,
            description=spec.description,
        ))
    return values
