"""
Providers: adaptadores a sistemas externos (gcloud, kubectl, helm) y simulado en memoria.
"""

from pathlib import Path
from typing import Iterable, Optional

from rich.console import Console

from forja.core.infra.registry import ProviderRegistry
from forja.providers.google import GoogleProvider
from forja.providers.helm import HelmProvider
from forja.providers.kubeconfig import KubeconfigCache
from forja.providers.kubernetes import KubernetesProvider
from forja.providers.memory import InMemoryProvider, seed_from_state
from forja.providers.schemas import SCHEMAS, schemas_for


PROVIDER_NAMES = ("google", "kubernetes", "helm")


def build_registry(
    mock: bool = False,
    console: Optional[Console] = None,
    workdir: Optional[Path] = None,
    applied: Iterable = (),
) -> ProviderRegistry:
    """
    Registro con los providers del stack.

    Args:
        mock: Usa InMemoryProvider bajo los mismos nombres (sin llamadas externas)
        console: Console de Rich para mostrar los comandos ejecutados
        workdir: Directorio para kubeconfigs generados
        applied: Estado aplicado con el que se reconstruyen los objetos simulados
    """
    registry = ProviderRegistry()
    if mock:
        providers = [InMemoryProvider(name, schemas_for(name)) for name in PROVIDER_NAMES]
        seed_from_state(providers, applied)
        for provider in providers:
            registry.register(provider.name, provider)
        return registry

    kubeconfigs = KubeconfigCache(workdir=workdir, console=console)
    registry.register("google", GoogleProvider(console=console))
    registry.register("kubernetes", KubernetesProvider(kubeconfigs=kubeconfigs, console=console))
    registry.register("helm", HelmProvider(kubeconfigs=kubeconfigs, console=console))
    return registry


__all__ = [
    "PROVIDER_NAMES",
    "SCHEMAS",
    "GoogleProvider",
    "HelmProvider",
    "InMemoryProvider",
    "KubernetesProvider",
    "KubeconfigCache",
    "build_registry",
    "schemas_for",
    "seed_from_state",
]
