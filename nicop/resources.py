"""Custom resource specifications consumed by the states when rendering manifests."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ResourceRequirements:
    """Compute resource requests and limits for a named container."""

    name: str = ""
    requests: dict[str, str] = field(default_factory=dict)
    limits: dict[str, str] = field(default_factory=dict)


@dataclass
class ImageSpec:
    """A container image and its pull and resource settings."""

    image: str = ""
    repository: str = ""
    version: str = ""
    image_pull_secrets: list[str] = field(default_factory=list)
    container_resources: list[ResourceRequirements] = field(default_factory=list)


@dataclass
class SecondaryNetworkSpec:
    """Components of the secondary network."""

    cni_plugins: ImageSpec | None = None
    ipoib: ImageSpec | None = None
    multus: ImageSpec | None = None
    ipam_plugin: ImageSpec | None = None


@dataclass
class IBKubernetesSpec(ImageSpec):
    """ib-kubernetes image and daemon settings."""

    periodic_update_seconds: int = 0
    pkey_guid_pool_range_start: str = ""
    pkey_guid_pool_range_end: str = ""
    ufm_secret: str = ""


@dataclass
class DOCATelemetryServiceConfig:
    """Where the DOCA Telemetry Service takes its configuration from."""

    from_config_map: str = ""


@dataclass
class DOCATelemetryServiceSpec(ImageSpec):
    """DOCA Telemetry Service image and configuration."""

    config: DOCATelemetryServiceConfig | None = None


@dataclass
class NicClusterPolicySpec:
    """Desired cluster-wide networking components."""

    ofed_driver: ImageSpec | None = None
    secondary_network: SecondaryNetworkSpec | None = None
    ib_kubernetes: IBKubernetesSpec | None = None
    doca_telemetry_service: DOCATelemetryServiceSpec | None = None
    tolerations: list[dict[str, Any]] = field(default_factory=list)
    node_affinity: dict[str, Any] | None = None


@dataclass
class NicClusterPolicy:
    """The cluster-wide NIC policy custom resource."""

    name: str = ""
    namespace: str = ""
    spec: NicClusterPolicySpec = field(default_factory=NicClusterPolicySpec)
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class HostDeviceNetwork:
    """A host-device network attachment custom resource."""

    name: str = ""
    network_namespace: str = ""
    resource_name: str = ""
    ipam: str = ""
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class IPoIBNetwork:
    """An IP-over-InfiniBand network attachment custom resource."""

    name: str = ""
    network_namespace: str = ""
    master: str = ""
    ipam: str = ""
    annotations: dict[str, str] = field(default_factory=dict)


def create_container_resources_map(
    resources: Iterable[ResourceRequirements] | None,
) -> dict[str, ResourceRequirements]:
    """Index resource requirements by container name; later entries win."""
    return {item.name: item for item in resources or ()}