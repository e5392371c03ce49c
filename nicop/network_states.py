"""States that render network attachment definitions for network custom resources.

The resources are HostDeviceNetwork and IPoIBNetwork.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from nicop.cni_states import DEFAULT_NAMESPACE, manifest_files
from nicop.render import RenderError, Renderer, TemplatingData
from nicop.resources import HostDeviceNetwork, IPoIBNetwork
from nicop.state import InfoCatalog, State, StateError, SyncState

log = logging.getLogger("nicop.network_states")

STATE_HOST_DEVICE_NETWORK_NAME = "state-host-device-network"
STATE_HOST_DEVICE_NETWORK_DESCRIPTION = "Host Device net-attach-def CR deployed in cluster"
RESOURCE_NAME_PREFIX = "nvidia.com/"

STATE_IPOIB_NETWORK_NAME = "state-IPoIB-Network"
STATE_IPOIB_NETWORK_DESCRIPTION = "IPoIB net-attach-def CR deployed in cluster"
LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION = (
    "operator.ipoibnetwork.mellanox.com/last-network-namespace"
)

NETWORK_ATTACHMENT_DEFINITION = "NetworkAttachmentDefinition"
NETWORK_ATTACHMENT_DEFINITION_KIND = {
    "apiVersion": "k8s.cni.cncf.io/v1",
    "kind": NETWORK_ATTACHMENT_DEFINITION,
}
HOST_DEVICE_NETWORK_KIND = {"apiVersion": "mellanox.com/v1alpha1", "kind": "HostDeviceNetwork"}
IPOIB_NETWORK_KIND = {"apiVersion": "mellanox.com/v1alpha1", "kind": "IPoIBNetwork"}


class NetworkObjectClient(Protocol):
    """Cluster access needed by the network states."""

    def apply(self, state_name: str, owner: Any, objects: list[dict[str, Any]]) -> SyncState:
        """Create or update the objects owned by the state and report their readiness."""
        ...

    def get(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Return the stored version of the object; raise LookupError if it does not exist."""
        ...

    def delete(self, kind: str, name: str, namespace: str) -> None:
        """Delete an object; raise LookupError if it does not exist."""
        ...

    def update(self, obj: Any) -> None:
        """Store changes to a custom resource."""
        ...


def resource_name_with_prefix(resource_name: str) -> str:
    """Return the resource name with the 'nvidia.com/' prefix, adding it if missing."""
    if resource_name.startswith(RESOURCE_NAME_PREFIX):
        return resource_name
    return RESOURCE_NAME_PREFIX + resource_name


def ipam_config(ipam: str) -> str:
    """Return the '"ipam":...' fragment of a CNI config, with all whitespace removed."""
    if ipam:
        return '"ipam":' + "".join(ipam.split())
    return '"ipam":{}'


@dataclass
class HostDeviceManifestRenderData:
    """Data for rendering the host-device network attachment definition."""

    host_device_network_name: str
    cr_spec: HostDeviceNetwork
    resource_name: str
    runtime_spec: dict[str, Any] = field(default_factory=dict)


def _namespace_of(obj: dict[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("namespace") or ""


def _name_of(obj: dict[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("name") or ""


class _NetworkState(State):
    """Common machinery of the states that render one network attachment definition."""

    def __init__(
        self,
        name: str,
        description: str,
        manifest_dir: str | Path,
        client: NetworkObjectClient | None = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        super().__init__(name, description)
        self.renderer = Renderer(manifest_files(manifest_dir))
        self.client = client
        self.namespace = namespace

    def _render(self, data: Any) -> list[dict[str, Any]]:
        log.debug("Rendering objects data=%s", data)
        try:
            objects = self.renderer.render_objects(TemplatingData(data=data))
        except RenderError as err:
            raise StateError(f"failed to render objects: {err}") from err
        log.debug("Rendered objects=%s", objects)
        return objects

    def _require_client(self) -> NetworkObjectClient:
        if self.client is None:
            raise StateError("unexpected state, no client to apply objects with")
        return self.client

    @staticmethod
    def _net_att_def(objects: list[dict[str, Any]]) -> dict[str, Any]:
        if not objects:
            raise StateError("no rendered objects found")
        net_att_def = objects[0]
        if net_att_def.get("kind") != NETWORK_ATTACHMENT_DEFINITION:
            raise StateError("no NetworkAttachmentDefinition object found")
        return net_att_def

    def _apply(self, cr: Any, objects: list[dict[str, Any]]) -> SyncState:
        client = self._require_client()
        try:
            return SyncState(client.apply(self.name, cr, objects))
        except StateError:
            raise
        except Exception as err:
            raise StateError(
                f"failed to create/update objects: {err}", SyncState.NOT_READY
            ) from err

    def _fetch(self, net_att_def: dict[str, Any]) -> dict[str, Any]:
        client = self._require_client()
        try:
            return client.get(net_att_def)
        except Exception as err:
            raise StateError(f"failed to get NetworkAttachmentDefinition: {err}") from err


class HostDeviceNetworkState(_NetworkState):
    """Renders the network attachment definition of a HostDeviceNetwork."""

    def __init__(
        self,
        manifest_dir: str | Path,
        client: NetworkObjectClient | None = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        super().__init__(
            STATE_HOST_DEVICE_NETWORK_NAME,
            STATE_HOST_DEVICE_NETWORK_DESCRIPTION,
            manifest_dir,
            client,
            namespace,
        )

    def sync(self, custom_resource: Any, info_catalog: InfoCatalog | None) -> SyncState:
        cr: HostDeviceNetwork = custom_resource
        log.info("Sync Custom resource State=%s Name=%s", self.name, cr.name)
        try:
            objects = self.get_manifest_objects(cr)
        except StateError as err:
            raise StateError(f"failed to render HostDeviceNetwork: {err}") from err
        net_att_def = self._net_att_def(objects)
        status = self._apply(cr, objects)
        self._fetch(net_att_def)
        return status

    def get_watch_sources(self) -> dict[str, Any]:
        return {
            "HostDeviceNetwork": dict(HOST_DEVICE_NETWORK_KIND),
            NETWORK_ATTACHMENT_DEFINITION: dict(NETWORK_ATTACHMENT_DEFINITION_KIND),
        }

    def get_manifest_objects(self, cr: HostDeviceNetwork) -> list[dict[str, Any]]:
        """Render the objects for the HostDeviceNetwork."""
        data = HostDeviceManifestRenderData(
            host_device_network_name=cr.name,
            cr_spec=cr,
            resource_name=resource_name_with_prefix(cr.resource_name),
            runtime_spec={"namespace": self.namespace},
        )
        return self._render(data)


class IPoIBNetworkState(_NetworkState):
    """Renders the network attachment definition of an IPoIBNetwork."""

    def __init__(
        self,
        manifest_dir: str | Path,
        client: NetworkObjectClient | None = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        super().__init__(
            STATE_IPOIB_NETWORK_NAME,
            STATE_IPOIB_NETWORK_DESCRIPTION,
            manifest_dir,
            client,
            namespace,
        )

    def sync(self, custom_resource: Any, info_catalog: InfoCatalog | None) -> SyncState:
        cr: IPoIBNetwork = custom_resource
        log.info("Sync Custom resource State=%s Name=%s", self.name, cr.name)
        try:
            objects = self.get_manifest_objects(cr)
        except StateError as err:
            raise StateError(f"failed to render IPoIBNetwork: {err}") from err
        net_att_def = self._net_att_def(objects)

        if self.namespace_changed(cr, net_att_def):
            self._remove_stale_definition(cr)

        status = self._apply(cr, objects)
        self.update_namespace_annotation(cr, net_att_def)
        self._fetch(net_att_def)
        return status

    def get_watch_sources(self) -> dict[str, Any]:
        return {
            "IPoIBNetwork": dict(IPOIB_NETWORK_KIND),
            NETWORK_ATTACHMENT_DEFINITION: dict(NETWORK_ATTACHMENT_DEFINITION_KIND),
        }

    def get_manifest_objects(self, cr: IPoIBNetwork) -> list[dict[str, Any]]:
        """Render the objects for the IPoIBNetwork."""
        data = {
            "NetworkName": cr.name,
            "NetworkNamespace": cr.network_namespace or "default",
            "Master": cr.master,
            "Ipam": ipam_config(cr.ipam),
        }
        return self._render(data)

    def namespace_changed(self, cr: IPoIBNetwork, net_att_def: dict[str, Any]) -> bool:
        """Return True if the definition moved away from the namespace recorded on the CR."""
        last = cr.annotations.get(LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION)
        return last is not None and _namespace_of(net_att_def) != last

    def update_namespace_annotation(self, cr: IPoIBNetwork, net_att_def: dict[str, Any]) -> bool:
        """Record the definition's namespace on the CR if it is new; return True if recorded."""
        recorded = LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION in cr.annotations
        if recorded and not self.namespace_changed(cr, net_att_def):
            return False
        cr.annotations = {LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION: _namespace_of(net_att_def)}
        client = self._require_client()
        try:
            client.update(cr)
        except Exception as err:
            raise StateError(f"failed to update IPoIBNetwork annotations: {err}") from err
        return True

    def _remove_stale_definition(self, cr: IPoIBNetwork) -> None:
        client = self._require_client()
        last = cr.annotations[LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION]
        try:
            client.delete(NETWORK_ATTACHMENT_DEFINITION, cr.name, last)
        except LookupError:
            pass
        except Exception as err:
            raise StateError(f"Couldn't delete NetworkAttachmentDefinition CR: {err}") from err