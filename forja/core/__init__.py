"""
Core: lógica del motor de reconciliación.

ENFORCEMENT (arquitectura limpia):
- Este paquete NO debe importar: forja.cli ni forja.providers (implementaciones).
- Permitido: typing, pathlib, pydantic, yaml, rich.console (inyectada), forja.core.*.
- Los providers y la CLI importan desde core; nunca al revés.
"""

from forja.core.errors import (
    ConfigError,
    CycleError,
    DestructiveChangeError,
    DriftError,
    ForjaError,
    OperationCancelled,
    ProviderError,
    ProviderTimeoutError,
    StateError,
    ValidationError,
)

__all__ = [
    "ForjaError",
    "ConfigError",
    "ValidationError",
    "CycleError",
    "StateError",
    "DestructiveChangeError",
    "ProviderError",
    "ProviderTimeoutError",
    "OperationCancelled",
    "DriftError",
]
