"""States that reconcile parts of the system, and the manager that drives them."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Protocol

from nicop.nodeinfo import Filter, NodePool

log = logging.getLogger("nicop.state")


class SyncState(str, Enum):
    """Sync status of a single state or of a collection of states."""

    READY = "ready"
    NOT_READY = "notReady"
    IGNORE = "ignore"
    RESET = "reset"
    ERROR = "error"


class StateError(Exception):
    """Raised by a state whose sync failed; carries the status the sync ended in."""

    def __init__(self, message: str, status: SyncState = SyncState.ERROR) -> None:
        super().__init__(message)
        self.status = status


class State(ABC):
    """A unit of reconciliation tied to a set of Kubernetes resources."""

    def __init__(self, name: str, description: str) -> None:
        self.name = name
        self.description = description

    @abstractmethod
    def sync(self, custom_resource: Any, info_catalog: InfoCatalog | None) -> SyncState:
        """Bring the system towards the state the custom resource describes.

        Raises StateError when the sync fails.
        """

    @abstractmethod
    def get_watch_sources(self) -> dict[str, Any]:
        """Return the source kinds to watch for this state, keyed by kind name."""


class InfoType(IntEnum):
    """Category of an information source held in an InfoCatalog."""

    NODE_INFO = 0
    CLUSTER_TYPE = 1
    STATIC_CONFIG = 2
    DOCA_DRIVER_IMAGE = 3


class InfoCatalog:
    """Information sources that states may consult while syncing."""

    def __init__(self) -> None:
        self._sources: dict[InfoType, Any] = {}

    def add(self, info_type: InfoType, info_source: Any) -> None:
        self._sources[InfoType(info_type)] = info_source

    def get_node_info_provider(self) -> Any:
        """Return the node info provider, or None."""
        return self._sources.get(InfoType.NODE_INFO)

    def get_cluster_type_provider(self) -> Any:
        """Return the cluster type provider, or None."""
        return self._sources.get(InfoType.CLUSTER_TYPE)

    def get_static_config_provider(self) -> Any:
        """Return the static configuration provider, or None."""
        return self._sources.get(InfoType.STATIC_CONFIG)

    def get_doca_driver_image_provider(self) -> Any:
        """Return the DOCA driver image provider, or None."""
        return self._sources.get(InfoType.DOCA_DRIVER_IMAGE)


@dataclass(frozen=True)
class StaticConfig:
    """Configuration that does not change while the operator runs."""

    cni_bin_directory: str = ""


class DummyProvider:
    """A stand-in for every provider, describing a plain Kubernetes cluster."""

    def is_kubernetes(self) -> bool:
        return True

    def is_openshift(self) -> bool:
        return False

    def get_static_config(self) -> StaticConfig:
        return StaticConfig(cni_bin_directory="")

    def get_node_pools(self, *args: Filter) -> list[NodePool]:
        return [
            NodePool(
                name="ubuntu20.04-5.15",
                os_name="ubuntu",
                os_version="20.04",
                kernel="5.15.0-78-generic",
            )
        ]

    def tag_exists(self, tag: str) -> bool:
        return False

    def set_image_spec(self, image_spec: Any) -> None:
        """Accept an image spec and ignore it."""


def dummy_catalog() -> InfoCatalog:
    """Return a catalog where every provider is a DummyProvider."""
    catalog = InfoCatalog()
    for info_type in (
        InfoType.NODE_INFO,
        InfoType.STATIC_CONFIG,
        InfoType.CLUSTER_TYPE,
        InfoType.DOCA_DRIVER_IMAGE,
    ):
        catalog.add(info_type, DummyProvider())
    return catalog


@dataclass
class Result:
    """Outcome of syncing one state."""

    state_name: str
    status: SyncState
    error: Exception | None = None


@dataclass
class Results:
    """Outcome of syncing all states; status is READY only if none is not ready or failed."""

    status: SyncState = SyncState.NOT_READY
    states_status: list[Result] = field(default_factory=list)


class StateManager:
    """Invokes a sequence of states to bring the system to its desired state."""

    def __init__(self, states: Iterable[State], client: Any = None) -> None:
        self.states = list(states)
        self.client = client

    def get_watch_sources(self) -> dict[str, Any]:
        """Merge the watch sources of all states; the first state to name a kind wins."""
        sources: dict[str, Any] = {}
        for state in self.states:
            for name, kind in state.get_watch_sources().items():
                sources.setdefault(name, kind)
        return sources

    def sync_state(self, custom_resource: Any, info_catalog: InfoCatalog | None) -> Results:
        """Sync every state in order and collect their results."""
        log.info("Syncing system state")
        results = Results(status=SyncState.NOT_READY)
        ready = True

        for state in self.states:
            log.info("Sync State Name=%s Description=%s", state.name, state.description)
            try:
                result = Result(state.name, state.sync(custom_resource, info_catalog))
            except StateError as err:
                result = Result(state.name, err.status, err)
                log.warning("Error while syncing state %s: %s", state.name, err)
            results.states_status.append(result)
            if result.status in (SyncState.NOT_READY, SyncState.ERROR):
                ready = False

        if ready:
            results.status = SyncState.READY
            log.info("Sync Done for custom resource")
        else:
            log.info("Sync not Done for custom resource")
        return results


class FakeState(State):
    """A state whose sync always reports a fixed status."""

    def __init__(
        self,
        name: str,
        description: str,
        sync_state: SyncState,
        watch_sources: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(name, description)
        self.sync_state_value = sync_state
        self.watch_sources = dict(watch_sources or {})

    def sync(self, custom_resource: Any, info_catalog: InfoCatalog | None) -> SyncState:
        return self.sync_state_value

    def get_watch_sources(self) -> dict[str, Any]:
        return self.watch_sources


class ManifestRenderer(Protocol):
    """A state that renders manifests from a NicClusterPolicy."""

    def get_manifest_objects(self, cr: Any, catalog: InfoCatalog) -> list[dict[str, Any]]:
        ...


def parse_container_names(renderer: ManifestRenderer | None, cr: Any) -> list[str]:
    """Render the manifests with a dummy catalog and return the names of their containers."""
    if renderer is None:
        raise ValueError("renderer is nil")
    manifests = renderer.get_manifest_objects(cr, dummy_catalog())

    names: list[str] = []
    for obj in manifests:
        if obj.get("kind") not in ("Deployment", "DaemonSet"):
            continue
        containers: Any = obj
        for key in ("spec", "template", "spec", "containers"):
            containers = containers.get(key) if isinstance(containers, dict) else None
        if not isinstance(containers, list):
            continue
        for container in containers:
            if isinstance(container, dict) and isinstance(container.get("name"), str):
                names.append(container["name"])
    return names