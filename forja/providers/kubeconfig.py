"""
Credenciales de clúster compartidas por los providers kubernetes y helm.

Un kubeconfig por (proyecto, ubicación, clúster), generado con
`gcloud container clusters get-credentials` y reutilizado durante la ejecución.
"""

import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from rich.console import Console

from forja.core.infra.base import BaseProvider
from forja.core.infra.contracts import OperationContext
from forja.providers.process import run_command


class KubeconfigCache:
    def __init__(self, workdir: Optional[Path] = None, console: Optional[Console] = None):
        self.workdir = Path(workdir) if workdir else None
        self.console = console
        self._paths: Dict[Tuple[str, str, str], Path] = {}
        self._lock = threading.Lock()

    def path_for(self, project: str, location: str, cluster: str, ctx: OperationContext) -> Path:
        key = (project, location, cluster)
        with self._lock:
            cached = self._paths.get(key)
            if cached and cached.exists():
                return cached
            if self.workdir is None:
                self.workdir = Path(tempfile.mkdtemp(prefix="forja-kube-"))
            self.workdir.mkdir(parents=True, exist_ok=True)
            path = self.workdir / f"{project}_{location}_{cluster}.kubeconfig"
            env = {**os.environ, "KUBECONFIG": str(path)}
            run_command(
                ["gcloud", "container", "clusters", "get-credentials", cluster,
                 "--location", location, "--project", project, "--quiet"],
                ctx=ctx, env=env, console=self.console,
            )
            self._paths[key] = path
            return path

    def for_attributes(self, attributes: Mapping[str, object], ctx: OperationContext) -> Path:
        """Atajo para nodos con project/location/cluster en sus atributos."""
        project = BaseProvider.require(attributes, "project", ctx)
        location = BaseProvider.require(attributes, "location", ctx)
        cluster = BaseProvider.require(attributes, "cluster", ctx)
        return self.path_for(str(project), str(location), str(cluster), ctx)
