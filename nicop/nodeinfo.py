"""Kubernetes node information: label filters and grouping of nodes into pools."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field

log = logging.getLogger("nicop.nodeinfo")

NODE_LABEL_OS_NAME = "feature.node.kubernetes.io/system-os_release.ID"
NODE_LABEL_OS_VER = "feature.node.kubernetes.io/system-os_release.VERSION_ID"
NODE_LABEL_KERNEL_VER_FULL = "feature.node.kubernetes.io/kernel-version.full"
NODE_LABEL_HOSTNAME = "kubernetes.io/hostname"
NODE_LABEL_CPU_ARCH = "kubernetes.io/arch"
NODE_LABEL_MLNX_NIC = "feature.node.kubernetes.io/pci-15b3.present"
NODE_LABEL_NV_GPU = "nvidia.com/gpu.present"
NODE_LABEL_WAIT_OFED = "network.nvidia.com/operator.mofed.wait"
NODE_LABEL_CUDA_VERSION_MAJOR = "nvidia.com/cuda.driver.major"
NODE_LABEL_OSTREE_VERSION = "feature.node.kubernetes.io/system-os_release.OSTREE_VERSION"

DOCKER = "docker"
CONTAINERD = "containerd"
CRIO = "cri-o"

# Selects nodes that carry a Mellanox NIC.
MELLANOX_NIC_LABELS = {NODE_LABEL_MLNX_NIC: "true"}


@dataclass
class Node:
    """A cluster node: its name, labels and reported container runtime version."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    container_runtime_version: str = ""


class Filter(ABC):
    """Selects a subset of a list of nodes."""

    @abstractmethod
    def apply(self, nodes: Iterable[Node]) -> list[Node]:
        """Return the nodes that pass the filter, in their original order."""


class NodeLabelFilter(Filter):
    """Keeps nodes that carry every configured label with the configured value."""

    def __init__(self, labels: dict[str, str] | None = None) -> None:
        self.labels: dict[str, str] = dict(labels or {})

    def apply(self, nodes: Iterable[Node]) -> list[Node]:
        return [
            node
            for node in nodes
            if all(
                key in node.labels and node.labels[key] == value
                for key, value in self.labels.items()
            )
        ]


class NodeLabelFilterBuilder:
    """Builds a NodeLabelFilter one label at a time."""

    def __init__(self) -> None:
        self._filter = NodeLabelFilter()

    def with_label(self, key: str, value: str) -> NodeLabelFilterBuilder:
        self._filter.labels[key] = value
        return self

    def build(self) -> NodeLabelFilter:
        return self._filter

    def reset(self) -> NodeLabelFilterBuilder:
        self._filter = NodeLabelFilter()
        return self


class NodeLabelNoValFilter(Filter):
    """Keeps nodes that carry every configured label, whatever its value."""

    def __init__(self, labels: Iterable[str] = ()) -> None:
        self.labels: set[str] = set(labels)

    def apply(self, nodes: Iterable[Node]) -> list[Node]:
        return [node for node in nodes if self.labels.issubset(node.labels)]


class NodeLabelNoValFilterBuilder:
    """Builds a NodeLabelNoValFilter one label at a time."""

    def __init__(self) -> None:
        self._filter = NodeLabelNoValFilter()

    def with_label(self, key: str) -> NodeLabelNoValFilterBuilder:
        self._filter.labels.add(key)
        return self

    def build(self) -> NodeLabelNoValFilter:
        return self._filter

    def reset(self) -> NodeLabelNoValFilterBuilder:
        self._filter = NodeLabelNoValFilter()
        return self


@dataclass(frozen=True)
class NodePool:
    """A set of nodes grouped by common attributes."""

    name: str = ""
    os_name: str = ""
    os_version: str = ""
    rhcos_version: str = ""
    kernel: str = ""
    arch: str = ""
    container_runtime: str = ""


_REQUIRED_LABELS = (
    NODE_LABEL_OS_NAME,
    NODE_LABEL_OS_VER,
    NODE_LABEL_CPU_ARCH,
    NODE_LABEL_KERNEL_VER_FULL,
)


class Provider:
    """Provides node attributes for a fixed list of nodes."""

    def __init__(self, nodes: Iterable[Node]) -> None:
        self.nodes = list(nodes)

    def get_node_pools(self, *args: Filter) -> list[NodePool]:
        """Partition the nodes passing all filters into pools by OS, OS version and kernel."""
        filtered = self.nodes
        for node_filter in args:
            filtered = node_filter.apply(filtered)

        pools: dict[str, NodePool] = {}
        for node in filtered:
            labels = node.labels
            missing = next((label for label in _REQUIRED_LABELS if label not in labels), None)
            if missing is not None:
                log.info(
                    "WARNING: Could not find NFD labels for node. Is NFD installed? Node=%s Label=%s",
                    node.name,
                    missing,
                )
                continue

            os_name = labels[NODE_LABEL_OS_NAME]
            os_version = labels[NODE_LABEL_OS_VER]
            kernel = labels[NODE_LABEL_KERNEL_VER_FULL]
            name = f"{os_name}{os_version}-{kernel}"
            if name in pools:
                continue
            pools[name] = NodePool(
                name=name,
                os_name=os_name,
                os_version=os_version,
                rhcos_version=labels.get(NODE_LABEL_OSTREE_VERSION, ""),
                kernel=kernel,
                arch=labels[NODE_LABEL_CPU_ARCH],
                container_runtime=get_container_runtime(node),
            )
            log.info("NodePool found: name=%s", name)

        return list(pools.values())


def get_container_runtime(node: Node) -> str:
    """Return the container runtime named in a '<runtime>://<x.y.z>' version string."""
    version = node.container_runtime_version
    for runtime in (DOCKER, CONTAINERD, CRIO):
        if version.startswith(runtime):
            return runtime
    return ""