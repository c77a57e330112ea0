"""
Contratos y base para providers de infraestructura.

Los providers (google, kubernetes, helm, mock) implementan estos contratos;
el core no depende de ningún provider concreto.
"""

from forja.core.infra.contracts import CancelToken, OperationContext, Provider, ResourceSchema
from forja.core.infra.registry import ProviderRegistry

__all__ = ["CancelToken", "OperationContext", "Provider", "ProviderRegistry", "ResourceSchema"]
