# nicop

Building blocks for reconciling NIC-related cluster resources: grouping nodes
into pools, rendering Kubernetes manifests from Jinja2 templates and driving a
set of states to readiness.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `nicop.nodeinfo` – the `Node` model, label filters built with
  `NodeLabelFilterBuilder` (label and value must match) and
  `NodeLabelNoValFilterBuilder` (label must be present), and
  `Provider.get_node_pools()`, which applies the given filters and splits the
  remaining nodes into `NodePool` groups named `<os><version>-<kernel>`. Nodes
  missing an OS, OS version, architecture or kernel label are skipped.
  `get_container_runtime()` tells docker, containerd and cri-o apart.
- `nicop.render` – `Renderer` takes a list of template files and
  `render_objects(TemplatingData(...))` returns the rendered objects as dicts,
  in file and document order; documents without a `kind` are dropped.
  Templates are Jinja2 with undefined names treated as errors, and may call
  `yaml`, `quote`, `indent`, `nindent`, `nindentPrefix`, `hasPrefix` and
  `imagePath`, plus any functions passed in `TemplatingData.funcs`.
  `image_path()` uses `@` for `sha256:` versions and `:` otherwise. Every
  failure raises `RenderError`.
- `nicop.resources` – dataclass models of the custom resources
  (`NicClusterPolicy`, `HostDeviceNetwork`, `IPoIBNetwork` and their specs) and
  `create_container_resources_map()`, which indexes resource requirements by
  container name.
- `nicop.state` – `SyncState`, `StateError`, the abstract `State`,
  `InfoCatalog` keyed by `InfoType`, `DummyProvider` and `dummy_catalog()`,
  `StateManager` with `sync_state()` returning `Results`, `FakeState`, and
  `parse_container_names()`, which lists the container names of the rendered
  Deployments and DaemonSets.
- `nicop.cni_states` – `CNIPluginsState` and `IPoIBCNIState`, plus
  `cni_bin_directory()` (configured directory, else `/var/lib/cni/bin` on
  OpenShift, else `/opt/cni/bin`).
- `nicop.service_states` – `IBKubernetesState` and
  `DOCATelemetryServiceState`; `should_deploy_config_map()` is true unless the
  telemetry service names its own ConfigMap.
- `nicop.network_states` – `HostDeviceNetworkState` and `IPoIBNetworkState`,
  which render one NetworkAttachmentDefinition each, plus
  `resource_name_with_prefix()` and `ipam_config()`.

Each concrete state is built from a directory of manifest templates
(`.yaml`, `.yml`, `.json`, read in sorted order) and an optional client
object. Failures are raised as `StateError`, whose `status` tells the
`SyncState` the sync ended in.

## Example

```python
from nicop.nodeinfo import Node, NodeLabelFilterBuilder, Provider

nodes = [Node(name="node-1", labels={"kubernetes.io/arch": "amd64"})]
arch_filter = NodeLabelFilterBuilder().with_label("kubernetes.io/arch", "amd64").build()
print([node.name for node in arch_filter.apply(nodes)])
```

## What it does not do

- It does not talk to a Kubernetes API server. The states hand rendered
  objects to the client you pass in, which must provide `apply` and
  `delete_state_objects` (CNI and service states) or `apply`, `get`, `delete`
  and `update` (network states). Without a client, the CNI and service states
  report `NOT_READY` after rendering and the network states raise
  `StateError`.
- It ships no manifest templates, no controller loop and no command-line
  program.
- It does not record revision checksums on objects.