"""
Provider kubernetes: aplica objetos con kubectl contra un clúster GKE.

Atributos de un nodo kubernetes_*:
    project, location, cluster  → clúster destino (credenciales vía gcloud)
    name, namespace             → identidad del objeto (namespace vacío = objeto de clúster)
    manifest                    → cuerpo del objeto (spec, data, stringData, metadata extra)
    wait_for_completion         → solo Jobs: espera condition=complete

El id remoto es "<project>/<location>/<cluster>:<Kind>/<namespace|_>/<name>".
"""

from typing import Any, Dict, List, Optional, Tuple

import yaml
from rich.console import Console

from forja.core.errors import ProviderError
from forja.core.infra.base import BaseProvider
from forja.core.infra.contracts import OperationContext
from forja.providers.kubeconfig import KubeconfigCache
from forja.providers.process import is_not_found, pick, run_command, run_json
from forja.providers.schemas import schemas_for


API_VERSIONS = {
    "Deployment": "apps/v1",
    "Job": "batch/v1",
    "Ingress": "networking.k8s.io/v1",
}

CLUSTER_SCOPED = {"Namespace", "PersistentVolume"}

OUTPUTS = {
    "uid": "metadata.uid",
    "resource_version": "metadata.resourceVersion",
    "cluster_ip": "spec.clusterIP",
}

NO_NAMESPACE = "_"


def kind_for(resource_type: str) -> str:
    """kubernetes_persistent_volume_claim → PersistentVolumeClaim"""
    return "".join(p.capitalize() for p in resource_type[len("kubernetes_"):].split("_"))


def build_object(resource_type: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
    """Arma el objeto completo (apiVersion/kind/metadata) a partir de los atributos."""
    kind = kind_for(resource_type)
    body = dict(attributes.get("manifest") or {})
    metadata = dict(body.pop("metadata", None) or {})
    metadata["name"] = attributes["name"]
    namespace = attributes.get("namespace")
    if namespace and kind not in CLUSTER_SCOPED:
        metadata["namespace"] = namespace
    return {"apiVersion": API_VERSIONS.get(kind, "v1"), "kind": kind, "metadata": metadata, **body}


def parse_object_id(resource_id: str) -> Tuple[str, str, str, str, str, str]:
    """Descompone el id remoto en (project, location, cluster, kind, namespace, name)."""
    try:
        cluster_part, object_part = resource_id.split(":", 1)
        project, location, cluster = cluster_part.split("/")
        kind, namespace, name = object_part.split("/")
    except ValueError:
        raise ProviderError(f"id de objeto inválido: {resource_id}")
    return project, location, cluster, kind, namespace, name


class KubernetesProvider(BaseProvider):
    """Despacha kubernetes_* a `kubectl apply/get/delete`."""

    name = "kubernetes"

    def __init__(
        self,
        kubeconfigs: Optional[KubeconfigCache] = None,
        kubectl: str = "kubectl",
        console: Optional[Console] = None,
    ):
        super().__init__(schemas_for("kubernetes"))
        self.kubeconfigs = kubeconfigs or KubeconfigCache(console=console)
        self.kubectl = kubectl
        self.console = console

    def create(self, resource_type: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        self.schema(resource_type)
        self.require(attributes, "name", ctx)
        kubeconfig = self.kubeconfigs.for_attributes(attributes, ctx)
        obj = build_object(resource_type, attributes)
        applied = run_json(
            [self.kubectl, "--kubeconfig", kubeconfig, "apply", "-f", "-", "-o", "json"],
            ctx=ctx, input_text=yaml.safe_dump(obj, sort_keys=False), console=self.console,
        )
        if obj["kind"] == "Job" and attributes.get("wait_for_completion"):
            self._wait_job(kubeconfig, obj, ctx)

        namespace = obj["metadata"].get("namespace") or NO_NAMESPACE
        resource_id = (
            f"{attributes['project']}/{attributes['location']}/{attributes['cluster']}:"
            f"{obj['kind']}/{namespace}/{obj['metadata']['name']}"
        )
        return {"id": resource_id, **pick(applied or {}, OUTPUTS)}

    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        # apply es idempotente: mismo camino que create, conservando el id
        outputs = self.create(resource_type, attributes, ctx)
        outputs.pop("id", None)
        return outputs

    def delete(self, resource_type: str, resource_id: str, ctx: OperationContext) -> None:
        self.schema(resource_type)
        args = self._object_args(resource_id, ctx)
        run_command([*args[0], "delete", *args[1], "--ignore-not-found", "--wait=true"], ctx=ctx, console=self.console)

    def read(self, resource_type: str, resource_id: str, ctx: OperationContext) -> Optional[Dict[str, Any]]:
        self.schema(resource_type)
        base, target = self._object_args(resource_id, ctx)
        try:
            doc = run_json([*base, "get", *target, "-o", "json", "--ignore-not-found"], ctx=ctx, console=self.console)
        except ProviderError as e:
            if is_not_found(e):
                return None
            raise
        if not doc:
            return None
        metadata = doc.get("metadata") or {}
        observed = {"name": metadata.get("name")}
        if metadata.get("namespace"):
            observed["namespace"] = metadata["namespace"]
        return {**observed, **pick(doc, OUTPUTS)}

    def _object_args(self, resource_id: str, ctx: OperationContext) -> Tuple[List[Any], List[str]]:
        project, location, cluster, kind, namespace, name = parse_object_id(resource_id)
        kubeconfig = self.kubeconfigs.path_for(project, location, cluster, ctx)
        target = [kind.lower(), name]
        if namespace != NO_NAMESPACE:
            target += ["-n", namespace]
        return [self.kubectl, "--kubeconfig", kubeconfig], target

    def _wait_job(self, kubeconfig, obj: Dict[str, Any], ctx: OperationContext) -> None:
        remaining = ctx.remaining
        timeout = f"{int(remaining)}s" if remaining is not None else "-1s"
        run_command(
            [self.kubectl, "--kubeconfig", kubeconfig, "wait", "--for=condition=complete",
             f"job/{obj['metadata']['name']}", "-n", obj["metadata"].get("namespace", "default"),
             f"--timeout={timeout}"],
            ctx=ctx, console=self.console,
        )
