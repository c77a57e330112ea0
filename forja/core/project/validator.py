"""
Validación del stack contra los providers registrados (lógica pura).

Sin I/O; solo reglas sobre nodos ya parseados.
"""

from typing import List

from forja.core.errors import ConfigError
from forja.core.infra.registry import ProviderRegistry
from forja.core.project.loader import Stack
from forja.core.values import iter_references


def validate_stack(stack: Stack, registry: ProviderRegistry) -> List[str]:
    """
    Valida providers, tipos y lifecycle de cada nodo.
    Devuelve lista de mensajes de error; si vacía, es válido.
    """
    errors: List[str] = []
    declared = set(stack.ids)
    for node in stack.nodes:
        if node.provider not in registry:
            errors.append(f"{node.id}: provider no registrado '{node.provider}'")
            continue
        try:
            registry.schema(node.provider, node.type)
        except ConfigError as e:
            errors.append(f"{node.id}: {e}")
        if node.id in node.dependencies:
            errors.append(f"{node.id}: no puede depender de sí mismo")
        for dep in node.depends_on:
            if dep not in declared:
                errors.append(f"{node.id}: depends_on a un nodo no declarado: {dep}")
        for ref in iter_references(dict(node.attributes)):
            if ref.node not in declared:
                errors.append(f"{node.id}: referencia a un nodo no declarado: {ref}")
        for name in node.lifecycle.ignore_changes:
            if name not in node.attributes:
                errors.append(f"{node.id}: ignore_changes menciona un atributo inexistente '{name}'")

    for output in stack.outputs.values():
        for ref in iter_references(output.value):
            if ref.node not in declared:
                errors.append(f"output {output.name}: referencia a un nodo no declarado: {ref}")
    return errors
