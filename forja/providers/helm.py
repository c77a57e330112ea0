"""
Provider helm: releases instaladas con `helm upgrade --install`.

Atributos: project, location, cluster, name, namespace, chart, repository,
version, values (mapa), create_namespace, wait.
El id remoto es "<project>/<location>/<cluster>:<namespace>/<name>".
"""

import os
import tempfile
from typing import Any, Dict, List, Optional, Tuple

import yaml
from rich.console import Console

from forja.core.errors import ProviderError
from forja.core.infra.base import BaseProvider
from forja.core.infra.contracts import OperationContext
from forja.providers.kubeconfig import KubeconfigCache
from forja.providers.process import is_not_found, pick, run_command, run_json
from forja.providers.schemas import schemas_for


OUTPUTS = {"revision": "version", "status": "info.status"}


def parse_release_id(resource_id: str) -> Tuple[str, str, str, str, str]:
    try:
        cluster_part, release_part = resource_id.split(":", 1)
        project, location, cluster = cluster_part.split("/")
        namespace, name = release_part.split("/")
    except ValueError:
        raise ProviderError(f"id de release inválido: {resource_id}")
    return project, location, cluster, namespace, name


class HelmProvider(BaseProvider):
    name = "helm"

    def __init__(
        self,
        kubeconfigs: Optional[KubeconfigCache] = None,
        helm: str = "helm",
        console: Optional[Console] = None,
    ):
        super().__init__(schemas_for("helm"))
        self.kubeconfigs = kubeconfigs or KubeconfigCache(console=console)
        self.helm = helm
        self.console = console

    def create(self, resource_type: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        self.schema(resource_type)
        name = str(self.require(attributes, "name", ctx))
        chart = str(self.require(attributes, "chart", ctx))
        namespace = str(attributes.get("namespace") or "default")
        kubeconfig = self.kubeconfigs.for_attributes(attributes, ctx)

        args: List[Any] = [self.helm, "upgrade", "--install", name, chart,
                           "--namespace", namespace, "--kubeconfig", kubeconfig, "-o", "json"]
        if attributes.get("repository"):
            args += ["--repo", attributes["repository"]]
        if attributes.get("version"):
            args += ["--version", attributes["version"]]
        if attributes.get("create_namespace", True):
            args.append("--create-namespace")
        if attributes.get("wait"):
            args.append("--wait")
            if ctx.remaining is not None:
                args += ["--timeout", f"{int(ctx.remaining)}s"]

        fd, values_file = tempfile.mkstemp(prefix="forja-values-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(attributes.get("values") or {}, f, sort_keys=False)
            doc = run_json([*args, "--values", values_file], ctx=ctx, console=self.console)
        finally:
            os.unlink(values_file)

        project, location, cluster = attributes["project"], attributes["location"], attributes["cluster"]
        return {"id": f"{project}/{location}/{cluster}:{namespace}/{name}", **pick(doc or {}, OUTPUTS)}

    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        outputs = self.create(resource_type, attributes, ctx)
        outputs.pop("id", None)
        return outputs

    def delete(self, resource_type: str, resource_id: str, ctx: OperationContext) -> None:
        self.schema(resource_type)
        base, namespace, name = self._release_args(resource_id, ctx)
        run_command([*base, "uninstall", name, "--namespace", namespace, "--wait"], ctx=ctx, console=self.console)

    def read(self, resource_type: str, resource_id: str, ctx: OperationContext) -> Optional[Dict[str, Any]]:
        self.schema(resource_type)
        base, namespace, name = self._release_args(resource_id, ctx)
        try:
            doc = run_json([*base, "status", name, "--namespace", namespace, "-o", "json"], ctx=ctx, console=self.console)
        except ProviderError as e:
            if is_not_found(e):
                return None
            raise
        if not doc:
            return None
        observed = pick(doc, {"version": "chart.metadata.version"})
        return {**observed, **pick(doc, OUTPUTS)}

    def _release_args(self, resource_id: str, ctx: OperationContext) -> Tuple[List[Any], str, str]:
        project, location, cluster, namespace, name = parse_release_id(resource_id)
        kubeconfig = self.kubeconfigs.path_for(project, location, cluster, ctx)
        return [self.helm, "--kubeconfig", kubeconfig], namespace, name
