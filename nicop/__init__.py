"""Node pooling, manifest rendering and state reconciliation for NIC cluster policies."""

__version__ = "0.1.0"

__all__ = [
    "cni_states",
    "network_states",
    "nodeinfo",
    "render",
    "resources",
    "service_states",
    "state",
]