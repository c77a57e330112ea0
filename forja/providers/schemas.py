"""
Tabla de esquemas de recursos (compartida por todos los adaptadores).

- immutable: campos cuyo cambio obliga a Replace.
- data_bearing: Replace/Destroy pierde datos; requiere --allow-destructive.
- sensitive: atributos que no se muestran por defecto (state show / outputs).
"""

from typing import Dict

from forja.core.infra.contracts import ResourceSchema


def _schema(*immutable: str, data_bearing: bool = False, sensitive=()) -> ResourceSchema:
    return ResourceSchema(
        immutable=frozenset(immutable),
        data_bearing=data_bearing,
        sensitive=frozenset(sensitive),
    )


# Atributos de ubicación de un objeto de Kubernetes: cambiarlos es otro objeto
_K8S_PLACEMENT = ("project", "location", "cluster", "namespace", "name")


SCHEMAS: Dict[str, ResourceSchema] = {
    # --- Red ---
    "google_project_service": _schema("project", "service"),
    "google_compute_network": _schema("project", "name", "subnet_mode"),
    "google_compute_subnetwork": _schema("project", "name", "region", "network", "ip_cidr_range"),
    "google_compute_router": _schema("project", "name", "region", "network"),
    "google_compute_router_nat": _schema("project", "name", "region", "router"),
    "google_compute_address": _schema("project", "name", "region", "network_tier"),
    # --- Cómputo ---
    "google_container_cluster": _schema(
        "project", "name", "location", "network", "subnetwork",
        "cluster_secondary_range_name", "services_secondary_range_name",
    ),
    "google_container_node_pool": _schema(
        "project", "name", "location", "cluster", "machine_type",
        "preemptible", "accelerator", "disk_size_gb", "node_count",
    ),
    # --- Datos ---
    "google_sql_database_instance": _schema(
        "project", "name", "region", "database_version", "network", data_bearing=True,
    ),
    "google_sql_database": _schema("project", "instance", "name", "charset", data_bearing=True),
    "google_sql_user": _schema("project", "instance", "name", sensitive=("password",)),
    "google_secret_manager_secret": _schema(
        "project", "name", "replication_policy", "locations", data_bearing=True,
    ),
    "google_secret_manager_secret_version": _schema(
        "project", "secret", "secret_data", data_bearing=True, sensitive=("secret_data",),
    ),
    "google_storage_bucket": _schema("project", "name", "location", data_bearing=True),
    "google_compute_disk": _schema("project", "name", "zone", "type", data_bearing=True),
    # --- Kubernetes ---
    "kubernetes_namespace": _schema(*_K8S_PLACEMENT),
    "kubernetes_secret": _schema(*_K8S_PLACEMENT, sensitive=("manifest",)),
    "kubernetes_config_map": _schema(*_K8S_PLACEMENT),
    "kubernetes_deployment": _schema(*_K8S_PLACEMENT),
    "kubernetes_service": _schema(*_K8S_PLACEMENT),
    "kubernetes_ingress": _schema(*_K8S_PLACEMENT),
    "kubernetes_job": _schema(*_K8S_PLACEMENT, "manifest"),
    "kubernetes_persistent_volume": _schema(*_K8S_PLACEMENT, data_bearing=True),
    "kubernetes_persistent_volume_claim": _schema(*_K8S_PLACEMENT, data_bearing=True),
    # --- Charts ---
    "helm_release": _schema("project", "location", "cluster", "namespace", "name"),
}


def schemas_for(provider: str) -> Dict[str, ResourceSchema]:
    """Subconjunto de la tabla para un provider (por prefijo del tipo)."""
    prefix = f"{provider}_"
    return {t: s for t, s in SCHEMAS.items() if t.startswith(prefix)}
