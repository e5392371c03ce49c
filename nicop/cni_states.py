"""States that deploy secondary-network CNI plugins from a NicClusterPolicy."""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from nicop.render import MANIFEST_FILE_SUFFIXES, RenderError, Renderer, TemplatingData
from nicop.resources import (
    ImageSpec,
    NicClusterPolicy,
    ResourceRequirements,
    create_container_resources_map,
)
from nicop.state import InfoCatalog, State, StateError, SyncState

log = logging.getLogger("nicop.cni_states")

DEFAULT_NAMESPACE = "nvidia-network-operator"
DEFAULT_CNI_BIN_DIR = "/opt/cni/bin"
OPENSHIFT_CNI_BIN_DIR = "/var/lib/cni/bin"

STATE_CNI_PLUGINS_NAME = "state-container-networking-plugins"
STATE_CNI_PLUGINS_DESCRIPTION = "Container Networking CNI Plugins deployed in the cluster"
STATE_IPOIB_CNI_NAME = "state-ipoib-cni"
STATE_IPOIB_CNI_DESCRIPTION = "IPoIB CNI deployed in the cluster"

DAEMONSET_KIND = {"apiVersion": "apps/v1", "kind": "DaemonSet"}


class ObjectClient(Protocol):
    """Applies rendered objects to the cluster and removes them again."""

    def apply(self, state_name: str, owner: Any, objects: list[dict[str, Any]]) -> SyncState:
        """Create or update the objects owned by the state and report their readiness."""
        ...

    def delete_state_objects(self, state_name: str) -> SyncState:
        """Remove every object the state created and report the outcome."""
        ...


def manifest_files(manifest_dir: str | Path) -> list[Path]:
    """Return the manifest files of a directory, sorted by path."""
    directory = Path(manifest_dir)
    if not directory.is_dir():
        raise StateError(
            f"failed to get files from manifest dir: {directory} is not a directory"
        )
    return sorted(
        (
            path
            for path in directory.iterdir()
            if path.is_file() and path.name.endswith(MANIFEST_FILE_SUFFIXES)
        ),
        key=str,
    )


def cni_bin_directory(static_config: Any, cluster_info: Any) -> str:
    """Return the host CNI binary directory.

    static_config is a provider with get_static_config(); cluster_info is a
    provider with is_openshift(). A configured directory wins, then the
    OpenShift default, then the plain Kubernetes default.
    """
    configured = static_config.get_static_config().cni_bin_directory
    if configured:
        return configured
    if cluster_info.is_openshift():
        return OPENSHIFT_CNI_BIN_DIR
    return DEFAULT_CNI_BIN_DIR


@dataclass
class CniRuntimeSpec:
    """Runtime information for rendering CNI manifests."""

    namespace: str
    cni_bin_directory: str
    container_resources: dict[str, ResourceRequirements] = field(default_factory=dict)
    is_openshift: bool = False


@dataclass
class CNIPluginsManifestRenderData:
    """Data for rendering the container networking plugins manifests."""

    cr_spec: ImageSpec
    tolerations: list[dict[str, Any]]
    node_affinity: dict[str, Any] | None
    runtime_spec: CniRuntimeSpec


@dataclass
class IPoIBManifestRenderData:
    """Data for rendering the IPoIB CNI manifests."""

    cr_spec: ImageSpec
    tolerations: list[dict[str, Any]]
    node_affinity: dict[str, Any] | None
    runtime_spec: CniRuntimeSpec


def _secondary_network_component(cr: NicClusterPolicy | None, component: str) -> ImageSpec | None:
    if cr is None or cr.spec.secondary_network is None:
        return None
    return getattr(cr.spec.secondary_network, component)


class _CniState(State):
    """Common machinery of the states that render a CNI DaemonSet."""

    def __init__(
        self,
        name: str,
        description: str,
        manifest_dir: str | Path,
        client: ObjectClient | None = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        super().__init__(name, description)
        self.renderer = Renderer(manifest_files(manifest_dir))
        self.client = client
        self.namespace = namespace

    def get_watch_sources(self) -> dict[str, Any]:
        return {"DaemonSet": dict(DAEMONSET_KIND)}

    @abstractmethod
    def get_manifest_objects(
        self, cr: NicClusterPolicy | None, catalog: InfoCatalog
    ) -> list[dict[str, Any]]:
        """Render the objects this state deploys."""

    def _render(self, data: Any) -> list[dict[str, Any]]:
        log.debug("Rendering objects data=%s", data)
        try:
            objects = self.renderer.render_objects(TemplatingData(data=data))
        except RenderError as err:
            raise StateError(f"failed to render objects: {err}", SyncState.NOT_READY) from err
        log.debug("Rendered objects=%s", objects)
        return objects

    def _remove_objects(self) -> SyncState:
        if self.client is None:
            return SyncState.READY
        return SyncState(self.client.delete_state_objects(self.name))

    def _deploy(self, cr: NicClusterPolicy, catalog: InfoCatalog) -> SyncState:
        try:
            objects = self.get_manifest_objects(cr, catalog)
        except StateError as err:
            raise StateError(
                f"failed to create k8s objects from manifest: {err}", SyncState.NOT_READY
            ) from err
        if not objects or self.client is None:
            return SyncState.NOT_READY
        try:
            return SyncState(self.client.apply(self.name, cr, objects))
        except StateError:
            raise
        except Exception as err:
            raise StateError(
                f"failed to create/update objects: {err}", SyncState.NOT_READY
            ) from err


class CNIPluginsState(_CniState):
    """Deploys the container networking CNI plugins."""

    def __init__(
        self,
        manifest_dir: str | Path,
        client: ObjectClient | None = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        super().__init__(
            STATE_CNI_PLUGINS_NAME,
            STATE_CNI_PLUGINS_DESCRIPTION,
            manifest_dir,
            client,
            namespace,
        )

    def sync(self, custom_resource: Any, info_catalog: InfoCatalog | None) -> SyncState:
        cr: NicClusterPolicy = custom_resource
        log.info("Sync Custom resource State=%s Name=%s", self.name, cr.name)
        if _secondary_network_component(cr, "cni_plugins") is None:
            return self._remove_objects()
        catalog = info_catalog or InfoCatalog()
        if catalog.get_static_config_provider() is None:
            raise StateError("unexpected state, catalog does not provide static info")
        return self._deploy(cr, catalog)

    def get_watch_sources(self) -> dict[str, Any]:
        return super().get_watch_sources()

    def get_manifest_objects(
        self, cr: NicClusterPolicy | None, catalog: InfoCatalog
    ) -> list[dict[str, Any]]:
        spec = _secondary_network_component(cr, "cni_plugins")
        if cr is None or spec is None:
            raise StateError("failed to render objects: state spec is nil", SyncState.NOT_READY)
        static_config = catalog.get_static_config_provider()
        if static_config is None:
            raise StateError("staticConfig provider required", SyncState.NOT_READY)
        cluster_info = catalog.get_cluster_type_provider()
        if cluster_info is None:
            raise StateError("clusterInfo provider required", SyncState.NOT_READY)
        data = CNIPluginsManifestRenderData(
            cr_spec=spec,
            tolerations=cr.spec.tolerations,
            node_affinity=cr.spec.node_affinity,
            runtime_spec=CniRuntimeSpec(
                namespace=self.namespace,
                cni_bin_directory=cni_bin_directory(static_config, cluster_info),
                container_resources=create_container_resources_map(spec.container_resources),
            ),
        )
        return self._render(data)


class IPoIBCNIState(_CniState):
    """Deploys the IP-over-InfiniBand CNI."""

    def __init__(
        self,
        manifest_dir: str | Path,
        client: ObjectClient | None = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        super().__init__(
            STATE_IPOIB_CNI_NAME,
            STATE_IPOIB_CNI_DESCRIPTION,
            manifest_dir,
            client,
            namespace,
        )

    def sync(self, custom_resource: Any, info_catalog: InfoCatalog | None) -> SyncState:
        cr: NicClusterPolicy = custom_resource
        log.info("Sync Custom resource State=%s Name=%s", self.name, cr.name)
        if _secondary_network_component(cr, "ipoib") is None:
            return self._remove_objects()
        catalog = info_catalog or InfoCatalog()
        if catalog.get_static_config_provider() is None:
            raise StateError("unexpected state, catalog does not provide static info")
        if catalog.get_cluster_type_provider() is None:
            raise StateError("unexpected state, catalog does not provide cluster type info")
        return self._deploy(cr, catalog)

    def get_watch_sources(self) -> dict[str, Any]:
        return super().get_watch_sources()

    def get_manifest_objects(
        self, cr: NicClusterPolicy | None, catalog: InfoCatalog
    ) -> list[dict[str, Any]]:
        spec = _secondary_network_component(cr, "ipoib")
        if cr is None or spec is None:
            raise StateError("failed to render objects: state spec is nil", SyncState.NOT_READY)
        cluster_info = catalog.get_cluster_type_provider()
        if cluster_info is None:
            raise StateError("clusterInfo provider required", SyncState.NOT_READY)
        static_config = catalog.get_static_config_provider()
        if static_config is None:
            raise StateError("staticConfig provider required", SyncState.NOT_READY)
        data = IPoIBManifestRenderData(
            cr_spec=spec,
            tolerations=cr.spec.tolerations,
            node_affinity=cr.spec.node_affinity,
            runtime_spec=CniRuntimeSpec(
                namespace=self.namespace,
                cni_bin_directory=cni_bin_directory(static_config, cluster_info),
                container_resources=create_container_resources_map(spec.container_resources),
                is_openshift=cluster_info.is_openshift(),
            ),
        )
        return self._render(data)