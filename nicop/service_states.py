"""States that deploy cluster services described by a NicClusterPolicy.

The services are ib-kubernetes and the DOCA Telemetry Service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from nicop.cni_states import DAEMONSET_KIND, DEFAULT_NAMESPACE, ObjectClient, _CniState
from nicop.resources import (
    DOCATelemetryServiceSpec,
    IBKubernetesSpec,
    NicClusterPolicy,
    ResourceRequirements,
    create_container_resources_map,
)
from nicop.state import InfoCatalog, StateError, SyncState

log = logging.getLogger("nicop.service_states")

STATE_IB_KUBERNETES_NAME = "state-ib-kubernetes"
STATE_IB_KUBERNETES_DESCRIPTION = "ib-kubernetes deployed in the cluster"

DOCA_TELEMETRY_SERVICE_NAME = "state-doca-telemetry-service"
DOCA_TELEMETRY_SERVICE_DEFAULT_CONFIG_MAP_NAME = "doca-telemetry-service"
DOCA_TELEMETRY_SERVICE_DESCRIPTION = "DOCA Telemetry Service deployed in the cluster"

DEPLOYMENT_KIND = {"apiVersion": "apps/v1", "kind": "Deployment"}


@dataclass
class IBKubernetesRuntimeSpec:
    """Runtime information for rendering the ib-kubernetes manifests."""

    namespace: str
    is_openshift: bool = False
    container_resources: dict[str, ResourceRequirements] = field(default_factory=dict)


@dataclass
class IBKubernetesManifestRenderData:
    """Data for rendering the ib-kubernetes manifests."""

    cr_spec: IBKubernetesSpec
    periodic_update_seconds_string: str
    tolerations: list[dict[str, Any]]
    node_affinity: dict[str, Any] | None
    deploy_init_container: bool
    runtime_spec: IBKubernetesRuntimeSpec


@dataclass
class DTSRuntimeSpec:
    """Runtime information for rendering the DOCA Telemetry Service manifests."""

    namespace: str
    container_resources: dict[str, ResourceRequirements] = field(default_factory=dict)
    is_openshift: bool = False


@dataclass
class DOCATelemetryServiceManifestRenderData:
    """Data for rendering the DOCA Telemetry Service manifests."""

    cr_spec: DOCATelemetryServiceSpec
    config_map_name: str
    deploy_config_map: bool
    runtime_spec: DTSRuntimeSpec
    tolerations: list[dict[str, Any]]
    node_affinity: dict[str, Any] | None


def should_deploy_config_map(spec: DOCATelemetryServiceSpec) -> bool:
    """Return True unless the service takes its configuration from an existing ConfigMap."""
    return spec.config is None


class IBKubernetesState(_CniState):
    """Deploys ib-kubernetes."""

    def __init__(
        self,
        manifest_dir: str | Path,
        client: ObjectClient | None = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        super().__init__(
            STATE_IB_KUBERNETES_NAME,
            STATE_IB_KUBERNETES_DESCRIPTION,
            manifest_dir,
            client,
            namespace,
        )

    def sync(self, custom_resource: Any, info_catalog: InfoCatalog | None) -> SyncState:
        cr: NicClusterPolicy = custom_resource
        log.info("Sync Custom resource State=%s Name=%s", self.name, cr.name)
        if cr.spec.ib_kubernetes is None:
            return self._remove_objects()
        catalog = info_catalog or InfoCatalog()
        if catalog.get_cluster_type_provider() is None:
            raise StateError("unexpected state, catalog does not provide cluster type info")
        return self._deploy(cr, catalog)

    def get_watch_sources(self) -> dict[str, Any]:
        return {"Deployment": dict(DEPLOYMENT_KIND)}

    def get_manifest_objects(
        self, cr: NicClusterPolicy | None, catalog: InfoCatalog
    ) -> list[dict[str, Any]]:
        if cr is None or cr.spec.ib_kubernetes is None:
            raise StateError("failed to render objects: state spec is nil", SyncState.NOT_READY)
        cluster_info = catalog.get_cluster_type_provider()
        if cluster_info is None:
            raise StateError("clusterType provider required", SyncState.NOT_READY)
        spec = cr.spec.ib_kubernetes
        data = IBKubernetesManifestRenderData(
            cr_spec=spec,
            periodic_update_seconds_string=str(spec.periodic_update_seconds),
            tolerations=cr.spec.tolerations,
            node_affinity=cr.spec.node_affinity,
            deploy_init_container=cr.spec.ofed_driver is not None,
            runtime_spec=IBKubernetesRuntimeSpec(
                namespace=self.namespace,
                is_openshift=cluster_info.is_openshift(),
                container_resources=create_container_resources_map(spec.container_resources),
            ),
        )
        return self._render(data)


class DOCATelemetryServiceState(_CniState):
    """Deploys the DOCA Telemetry Service."""

    def __init__(
        self,
        manifest_dir: str | Path,
        client: ObjectClient | None = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        super().__init__(
            DOCA_TELEMETRY_SERVICE_NAME,
            DOCA_TELEMETRY_SERVICE_DESCRIPTION,
            manifest_dir,
            client,
            namespace,
        )

    def sync(self, custom_resource: Any, info_catalog: InfoCatalog | None) -> SyncState:
        cr: NicClusterPolicy = custom_resource
        log.info("Sync Custom resource State=%s Name=%s", self.name, cr.name)
        if cr.spec.doca_telemetry_service is None:
            return self._remove_objects()
        return self._deploy(cr, info_catalog or InfoCatalog())

    def get_watch_sources(self) -> dict[str, Any]:
        return {"DaemonSet": dict(DAEMONSET_KIND)}

    def get_manifest_objects(
        self, cr: NicClusterPolicy | None, catalog: InfoCatalog
    ) -> list[dict[str, Any]]:
        if cr is None or cr.spec.doca_telemetry_service is None:
            raise StateError("failed to render objects: state spec is nil", SyncState.NOT_READY)
        spec = cr.spec.doca_telemetry_service
        config_map_name = DOCA_TELEMETRY_SERVICE_DEFAULT_CONFIG_MAP_NAME
        if spec.config is not None:
            config_map_name = spec.config.from_config_map
        cluster_info = catalog.get_cluster_type_provider()
        if cluster_info is None:
            raise StateError("clusterInfo provider required", SyncState.NOT_READY)
        data = DOCATelemetryServiceManifestRenderData(
            cr_spec=spec,
            config_map_name=config_map_name,
            deploy_config_map=should_deploy_config_map(spec),
            runtime_spec=DTSRuntimeSpec(
                namespace=self.namespace,
                container_resources=create_container_resources_map(spec.container_resources),
                is_openshift=cluster_info.is_openshift(),
            ),
            tolerations=cr.spec.tolerations,
            node_affinity=cr.spec.node_affinity,
        )
        return self._render(data)