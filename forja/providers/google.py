"""
Provider google: adaptador delgado sobre el CLI gcloud.

Cada tipo se describe con una GcloudType (grupo de comandos, ubicación,
padre, flags de create/update y outputs a extraer de `describe`).
Los ids remotos son rutas por pares, ej:
    projects/P/regions/R/subnetworks/S
    projects/P/instances/I/databases/D
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rich.console import Console

from forja.core.errors import ProviderError
from forja.core.infra.base import BaseProvider
from forja.core.infra.contracts import OperationContext
from forja.providers.process import is_not_found, pick, run_command, run_json
from forja.providers.schemas import schemas_for


@dataclass(frozen=True)
class GcloudType:
    group: Tuple[str, ...]  # ej: ("compute", "networks", "subnets")
    collection: str  # segmento del id remoto
    scope: Optional[str] = None  # region | zone | location
    parent: Optional[Tuple[str, str, str]] = None  # (atributo, flag, segmento del id)
    flags: Mapping[str, str] = field(default_factory=dict)  # atributo → flag de create
    update_flags: Mapping[str, str] = field(default_factory=dict)  # atributo → flag de update
    update_verb: str = "update"
    outputs: Mapping[str, Any] = field(default_factory=dict)  # output → ruta en describe
    observed: Mapping[str, Any] = field(default_factory=dict)  # atributo → ruta (drift)
    name_format: str = "{}"


SCOPE_SEGMENTS = {"region": "regions", "zone": "zones", "location": "locations"}


GCLOUD_TYPES: Dict[str, GcloudType] = {
    "google_compute_network": GcloudType(
        group=("compute", "networks"), collection="networks",
        flags={"subnet_mode": "--subnet-mode", "routing_mode": "--bgp-routing-mode"},
        update_flags={"routing_mode": "--bgp-routing-mode"},
        outputs={"self_link": "selfLink"},
        observed={"routing_mode": ("routingConfig.routingMode", str.lower)},
    ),
    "google_compute_subnetwork": GcloudType(
        group=("compute", "networks", "subnets"), collection="subnetworks", scope="region",
        flags={
            "network": "--network",
            "ip_cidr_range": "--range",
            "secondary_ranges": "--secondary-range",
            "private_ip_google_access": "--enable-private-ip-google-access",
        },
        update_flags={"private_ip_google_access": "--enable-private-ip-google-access"},
        outputs={"self_link": "selfLink", "gateway_address": "gatewayAddress"},
        observed={"private_ip_google_access": "privateIpGoogleAccess"},
    ),
    "google_compute_router": GcloudType(
        group=("compute", "routers"), collection="routers", scope="region",
        flags={"network": "--network"},
        outputs={"self_link": "selfLink"},
    ),
    "google_compute_router_nat": GcloudType(
        group=("compute", "routers", "nats"), collection="nats", scope="region",
        parent=("router", "--router", "routers"),
        flags={
            "nat_all_subnet_ip_ranges": "--nat-all-subnet-ip-ranges",
            "auto_allocate_ips": "--auto-allocate-nat-external-ips",
        },
        update_flags={"nat_all_subnet_ip_ranges": "--nat-all-subnet-ip-ranges"},
    ),
    "google_compute_address": GcloudType(
        group=("compute", "addresses"), collection="addresses", scope="region",
        flags={"network_tier": "--network-tier"},
        outputs={"address": "address", "self_link": "selfLink"},
    ),
    "google_container_cluster": GcloudType(
        group=("container", "clusters"), collection="clusters", scope="location",
        flags={
            "network": "--network",
            "subnetwork": "--subnetwork",
            "cluster_secondary_range_name": "--cluster-secondary-range-name",
            "services_secondary_range_name": "--services-secondary-range-name",
            "release_channel": "--release-channel",
            "num_nodes": "--num-nodes",
            "enable_ip_alias": "--enable-ip-alias",
            "workload_pool": "--workload-pool",
            "private_nodes": "--enable-private-nodes",
            "master_ipv4_cidr": "--master-ipv4-cidr",
        },
        update_flags={"release_channel": "--release-channel"},
        outputs={
            "endpoint": "endpoint",
            "ca_certificate": "masterAuth.clusterCaCertificate",
            "master_version": "currentMasterVersion",
        },
        observed={"release_channel": ("releaseChannel.channel", str.lower)},
    ),
    "google_container_node_pool": GcloudType(
        group=("container", "node-pools"), collection="nodePools", scope="location",
        parent=("cluster", "--cluster", "clusters"),
        flags={
            "machine_type": "--machine-type",
            "node_count": "--num-nodes",
            "disk_size_gb": "--disk-size",
            "preemptible": "--preemptible",
            "accelerator": "--accelerator",
            "autoscaling": "--enable-autoscaling",
            "min_node_count": "--min-nodes",
            "max_node_count": "--max-nodes",
            "node_labels": "--node-labels",
            "node_taints": "--node-taints",
        },
        update_flags={
            "autoscaling": "--enable-autoscaling",
            "min_node_count": "--min-nodes",
            "max_node_count": "--max-nodes",
            "node_labels": "--node-labels",
        },
        outputs={"instance_group_urls": "instanceGroupUrls"},
        observed={
            "min_node_count": ("autoscaling.minNodeCount", int),
            "max_node_count": ("autoscaling.maxNodeCount", int),
        },
    ),
    "google_sql_database_instance": GcloudType(
        group=("sql", "instances"), collection="instances",
        flags={
            "region": "--region",
            "database_version": "--database-version",
            "tier": "--tier",
            "availability_type": "--availability-type",
            "disk_size_gb": "--storage-size",
            "network": "--network",
            "no_public_ip": "--no-assign-ip",
            "deletion_protection": "--deletion-protection",
        },
        update_flags={
            "tier": "--tier",
            "availability_type": "--availability-type",
            "disk_size_gb": "--storage-size",
        },
        update_verb="patch",
        outputs={"connection_name": "connectionName", "private_ip_address": "ipAddresses.0.ipAddress"},
        observed={"tier": "settings.tier", "availability_type": ("settings.availabilityType", str.upper)},
    ),
    "google_sql_database": GcloudType(
        group=("sql", "databases"), collection="databases",
        parent=("instance", "--instance", "instances"),
        flags={"charset": "--charset", "collation": "--collation"},
        update_flags={"collation": "--collation"},
        update_verb="patch",
    ),
    "google_sql_user": GcloudType(
        group=("sql", "users"), collection="users",
        parent=("instance", "--instance", "instances"),
        flags={"password": "--password"},
        update_flags={"password": "--password"},
        update_verb="set-password",
    ),
    "google_secret_manager_secret": GcloudType(
        group=("secrets",), collection="secrets",
        flags={"replication_policy": "--replication-policy", "locations": "--locations", "labels": "--labels"},
        update_flags={"labels": "--update-labels"},
    ),
    "google_storage_bucket": GcloudType(
        group=("storage", "buckets"), collection="buckets",
        flags={
            "location": "--location",
            "storage_class": "--default-storage-class",
            "uniform_access": "--uniform-bucket-level-access",
            "versioning": "--versioning",
        },
        update_flags={"storage_class": "--default-storage-class", "versioning": "--versioning"},
        outputs={"url": "storage_url"},
        observed={"storage_class": ("default_storage_class", str.upper)},
        name_format="gs://{}",
    ),
    "google_compute_disk": GcloudType(
        group=("compute", "disks"), collection="disks", scope="zone",
        flags={"size_gb": "--size", "type": "--type"},
        update_flags={"size_gb": "--size"},
        update_verb="resize",
        outputs={"self_link": "selfLink"},
        observed={"size_gb": ("sizeGb", int)},
    ),
}


def format_flag(flag: str, value: Any) -> List[str]:
    """Convierte un atributo en argumentos de gcloud (bool → flag suelto, mapa → k=v,...)."""
    if value is None:
        return []
    if isinstance(value, bool):
        return [flag] if value else []
    if isinstance(value, dict):
        return [f"{flag}={','.join(f'{k}={v}' for k, v in value.items())}"]
    if isinstance(value, list):
        return [f"{flag}={','.join(str(v) for v in value)}"]
    return [f"{flag}={value}"]


def parse_resource_id(resource_id: str) -> Dict[str, str]:
    """projects/P/regions/R/subnetworks/S → {projects: P, regions: R, subnetworks: S}"""
    parts = resource_id.strip("/").split("/")
    if len(parts) % 2:
        raise ProviderError(f"id de recurso inválido: {resource_id}")
    return dict(zip(parts[0::2], parts[1::2]))


class GoogleProvider(BaseProvider):
    """Crea, actualiza, lee y borra recursos de Google Cloud vía gcloud."""

    name = "google"

    def __init__(self, gcloud: str = "gcloud", console: Optional[Console] = None):
        super().__init__(schemas_for("google"))
        self.gcloud = gcloud
        self.console = console

    # --- Contrato Provider ---

    def create(self, resource_type: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        self.schema(resource_type)
        if resource_type == "google_project_service":
            return self._enable_service(attributes, ctx)
        if resource_type == "google_secret_manager_secret_version":
            return self._add_secret_version(attributes, ctx)

        spec = GCLOUD_TYPES[resource_type]
        project = str(self.require(attributes, "project", ctx))
        name = str(self.require(attributes, "name", ctx))
        location = self._location(spec, attributes, ctx)
        parent = self._parent(spec, attributes, ctx)

        args = [*spec.group, "create", spec.name_format.format(name)]
        args += self._placement(spec, project, location, parent)
        for attr, flag in spec.flags.items():
            args += format_flag(flag, attributes.get(attr))
        self._run(args, ctx)

        resource_id = self._resource_id(spec, project, location, parent, name)
        return {"id": resource_id, **self._describe_outputs(spec, resource_id, ctx)}

    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        self.schema(resource_type)
        spec = GCLOUD_TYPES.get(resource_type)
        if spec is None or not spec.update_flags:
            raise ProviderError(f"{resource_type} no admite actualización en sitio", node=ctx.node)

        args = [*spec.group, spec.update_verb, *self._target(spec, resource_id)]
        for attr, flag in spec.update_flags.items():
            if attr in attributes:
                args += format_flag(flag, attributes[attr])
        self._run(args, ctx)
        return self._describe_outputs(spec, resource_id, ctx)

    def delete(self, resource_type: str, resource_id: str, ctx: OperationContext) -> None:
        self.schema(resource_type)
        ids = parse_resource_id(resource_id)
        if resource_type == "google_project_service":
            self._run(["services", "disable", ids["services"], "--project", ids["projects"]], ctx)
            return
        if resource_type == "google_secret_manager_secret_version":
            self._run(["secrets", "versions", "destroy", ids["versions"],
                       "--secret", ids["secrets"], "--project", ids["projects"]], ctx)
            return
        spec = GCLOUD_TYPES[resource_type]
        self._run([*spec.group, "delete", *self._target(spec, resource_id)], ctx)

    def read(self, resource_type: str, resource_id: str, ctx: OperationContext) -> Optional[Dict[str, Any]]:
        self.schema(resource_type)
        ids = parse_resource_id(resource_id)
        try:
            if resource_type == "google_project_service":
                enabled = self._run_json(
                    ["services", "list", "--enabled", "--project", ids["projects"],
                     f"--filter=config.name={ids['services']}"], ctx,
                )
                return {"service": ids["services"]} if enabled else None
            if resource_type == "google_secret_manager_secret_version":
                doc = self._run_json(["secrets", "versions", "describe", ids["versions"],
                                      "--secret", ids["secrets"], "--project", ids["projects"]], ctx)
                if not doc or doc.get("state") == "DESTROYED":
                    return None
                return {"version": ids["versions"]}
            spec = GCLOUD_TYPES[resource_type]
            doc = self._run_json([*spec.group, "describe", *self._target(spec, resource_id)], ctx)
        except ProviderError as e:
            if is_not_found(e):
                return None
            raise
        if doc is None:
            return None
        return {**pick(doc, spec.observed), **pick(doc, spec.outputs)}

    # --- Tipos especiales ---

    def _enable_service(self, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        project = str(self.require(attributes, "project", ctx))
        service = str(self.require(attributes, "service", ctx))
        self._run(["services", "enable", service, "--project", project], ctx)
        return {"id": f"projects/{project}/services/{service}"}

    def _add_secret_version(self, attributes: Dict[str, Any], ctx: OperationContext) -> Dict[str, Any]:
        project = str(self.require(attributes, "project", ctx))
        secret = str(self.require(attributes, "secret", ctx))
        data = self.require(attributes, "secret_data", ctx)
        doc = self._run_json(
            ["secrets", "versions", "add", secret, "--project", project, "--data-file=-"],
            ctx, input_text=str(data),
        )
        version = str(doc.get("name", "")).rsplit("/", 1)[-1] if isinstance(doc, dict) else ""
        if not version:
            raise ProviderError("gcloud no devolvió la versión creada", node=ctx.node)
        return {"id": f"projects/{project}/secrets/{secret}/versions/{version}", "version": version}

    # --- Auxiliares ---

    def _location(self, spec: GcloudType, attributes: Mapping[str, Any], ctx: OperationContext) -> Optional[str]:
        if spec.scope is None:
            return None
        return str(self.require(attributes, spec.scope, ctx))

    def _parent(self, spec: GcloudType, attributes: Mapping[str, Any], ctx: OperationContext) -> Optional[str]:
        if spec.parent is None:
            return None
        return str(self.require(attributes, spec.parent[0], ctx))

    @staticmethod
    def _placement(spec: GcloudType, project: str, location: Optional[str], parent: Optional[str]) -> List[str]:
        args = ["--project", project]
        if spec.scope and location:
            args += [f"--{spec.scope}", location]
        if spec.parent and parent:
            args += [spec.parent[1], parent]
        return args

    @staticmethod
    def _resource_id(spec: GcloudType, project: str, location: Optional[str], parent: Optional[str], name: str) -> str:
        parts = ["projects", project]
        if spec.scope and location:
            parts += [SCOPE_SEGMENTS[spec.scope], location]
        if spec.parent and parent:
            parts += [spec.parent[2], parent]
        parts += [spec.collection, name]
        return "/".join(parts)

    def _target(self, spec: GcloudType, resource_id: str) -> List[str]:
        """Argumentos que identifican un objeto existente a partir de su id."""
        ids = parse_resource_id(resource_id)
        location = ids.get(SCOPE_SEGMENTS[spec.scope]) if spec.scope else None
        parent = ids.get(spec.parent[2]) if spec.parent else None
        name = spec.name_format.format(ids[spec.collection])
        return [name, *self._placement(spec, ids["projects"], location, parent)]

    def _describe_outputs(self, spec: GcloudType, resource_id: str, ctx: OperationContext) -> Dict[str, Any]:
        if not spec.outputs:
            return {}
        doc = self._run_json([*spec.group, "describe", *self._target(spec, resource_id)], ctx)
        return pick(doc or {}, spec.outputs)

    def _run(self, args: List[str], ctx: OperationContext) -> None:
        run_command([self.gcloud, *args, "--quiet"], ctx=ctx, console=self.console)

    def _run_json(self, args: List[str], ctx: OperationContext, input_text: Optional[str] = None) -> Any:
        return run_json(
            [self.gcloud, *args, "--format=json", "--quiet"],
            ctx=ctx, input_text=input_text, console=self.console,
        )
