"""
Registro de providers: despacha cada nodo al provider por nombre.
"""

from typing import Dict, List

from forja.core.errors import ConfigError
from forja.core.infra.contracts import Provider, ResourceSchema


class ProviderRegistry:
    """Mapa nombre → provider; el nodo elige por su campo provider."""

    def __init__(self):
        self._providers: Dict[str, Provider] = {}

    def register(self, name: str, provider: Provider) -> None:
        self._providers[name] = provider

    def get(self, name: str) -> Provider:
        try:
            return self._providers[name]
        except KeyError:
            available = ", ".join(sorted(self._providers)) or "ninguno"
            raise ConfigError(f"Provider no registrado: '{name}' (disponibles: {available})")

    def schema(self, provider: str, resource_type: str) -> ResourceSchema:
        return self.get(provider).schema(resource_type)

    def names(self) -> List[str]:
        return sorted(self._providers)

    def __contains__(self, name: str) -> bool:
        return name in self._providers
