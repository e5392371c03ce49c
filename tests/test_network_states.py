import json

import pytest

from nicop.network_states import (
    LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION,
    HostDeviceNetworkState,
    IPoIBNetworkState,
    ipam_config,
    resource_name_with_prefix,
)
from nicop.resources import HostDeviceNetwork, IPoIBNetwork
from nicop.state import InfoCatalog, StateError, SyncState

RESOURCE_ANNOTATION = "k8s.v1.cni.cncf.io/resourceName"

HOST_DEVICE_TEMPLATE = """\
apiVersion: k8s.cni.cncf.io/v1
kind: NetworkAttachmentDefinition
metadata:
  name: {{ host_device_network_name }}
  namespace: {{ cr_spec.network_namespace }}
  annotations:
    k8s.v1.cni.cncf.io/resourceName: {{ resource_name }}
spec:
  config: '{ "cniVersion":"0.3.1", "name":"{{ host_device_network_name }}", "type":"host-device", "ipam":{{ cr_spec.ipam or "{}" }} }'
"""

IPOIB_TEMPLATE = """\
apiVersion: k8s.cni.cncf.io/v1
kind: NetworkAttachmentDefinition
metadata:
  name: {{ NetworkName }}
  namespace: {{ NetworkNamespace }}
spec:
  config: '{ "cniVersion":"0.3.1", "name":"{{ NetworkName }}", "type":"ipoib", "master":"{{ Master }}", {{ Ipam }} }'
"""

WRONG_KIND_TEMPLATE = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: something
"""

IPAM = {
    "type": "whereabouts",
    "range": "192.168.2.225/28",
    "exclude": ["192.168.2.229/30", "192.168.2.236/32"],
}


class FakeClient:
    def __init__(self):
        self.objects = {}
        self.updated = []

    @staticmethod
    def _key(obj):
        metadata = obj.get("metadata", {})
        return (obj["kind"], metadata.get("namespace", ""), metadata["name"])

    def apply(self, state_name, owner, objects):
        for obj in objects:
            self.objects[self._key(obj)] = obj
        return SyncState.READY

    def get(self, obj):
        return self.objects[self._key(obj)]

    def delete(self, kind, name, namespace):
        del self.objects[(kind, namespace, name)]

    def update(self, obj):
        self.updated.append(dict(obj.annotations))


def _write(tmp_path, name, text):
    directory = tmp_path / name
    directory.mkdir()
    (directory / "0010-nad.yaml").write_text(text)
    return directory


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def host_device_state(tmp_path, client):
    return HostDeviceNetworkState(_write(tmp_path, "hostdevice", HOST_DEVICE_TEMPLATE), client)


@pytest.fixture
def ipoib_state(tmp_path, client):
    return IPoIBNetworkState(_write(tmp_path, "ipoib", IPOIB_TEMPLATE), client)


def _nad(client, name, namespace):
    return client.objects[("NetworkAttachmentDefinition", namespace, name)]


def test_resource_name_with_prefix():
    assert resource_name_with_prefix("test") == "nvidia.com/test"
    assert resource_name_with_prefix("nvidia.com/test") == "nvidia.com/test"


def test_ipam_config():
    assert ipam_config("") == '"ipam":{}'
    assert ipam_config('{ "type": "whereabouts",\n "range": "10.0.0.0/24" }') == (
        '"ipam":{"type":"whereabouts","range":"10.0.0.0/24"}'
    )


def test_host_device_renders_definition(host_device_state, client):
    cr = HostDeviceNetwork(name="host-device", network_namespace="hostdevice", resource_name="test")
    assert host_device_state.sync(cr, InfoCatalog()) == SyncState.READY
    nad = _nad(client, "host-device", "hostdevice")
    assert nad["metadata"]["annotations"][RESOURCE_ANNOTATION] == "nvidia.com/test"
    config = json.loads(nad["spec"]["config"])
    assert config["name"] == "host-device"
    assert config["type"] == "host-device"
    assert config["ipam"] == {}


def test_host_device_prefixed_resource_name(host_device_state, client):
    cr = HostDeviceNetwork(
        name="host-device", network_namespace="hostdevice", resource_name="nvidia.com/host-device"
    )
    assert host_device_state.sync(cr, InfoCatalog()) == SyncState.READY
    nad = _nad(client, "host-device", "hostdevice")
    assert nad["metadata"]["annotations"][RESOURCE_ANNOTATION] == "nvidia.com/host-device"


def test_host_device_with_ipam(host_device_state, client):
    cr = HostDeviceNetwork(
        name="host-device",
        network_namespace="hostdevice",
        resource_name="test",
        ipam=json.dumps(IPAM),
    )
    assert host_device_state.sync(cr, None) == SyncState.READY
    config = json.loads(_nad(client, "host-device", "hostdevice")["spec"]["config"])
    assert config["ipam"] == IPAM


def test_host_device_watch_sources(host_device_state):
    assert set(host_device_state.get_watch_sources()) == {
        "HostDeviceNetwork",
        "NetworkAttachmentDefinition",
    }


def test_host_device_no_objects(tmp_path, client):
    state = HostDeviceNetworkState(_write(tmp_path, "empty", "  \n"), client)
    cr = HostDeviceNetwork(name="x", resource_name="test")
    with pytest.raises(StateError, match="no rendered objects found") as info:
        state.sync(cr, None)
    assert info.value.status == SyncState.ERROR


def test_host_device_wrong_kind(tmp_path, client):
    state = HostDeviceNetworkState(_write(tmp_path, "wrong", WRONG_KIND_TEMPLATE), client)
    with pytest.raises(StateError, match="no NetworkAttachmentDefinition") as info:
        state.sync(HostDeviceNetwork(name="x"), None)
    assert info.value.status == SyncState.ERROR


def test_ipoib_renders_definition(ipoib_state, client):
    cr = IPoIBNetwork(name="ipo-ib", network_namespace="ipoib", master="eth0")
    assert ipoib_state.sync(cr, InfoCatalog()) == SyncState.READY
    config = json.loads(_nad(client, "ipo-ib", "ipoib")["spec"]["config"])
    assert config["type"] == "ipoib"
    assert config["master"] == "eth0"
    assert config["ipam"] == {}
    assert cr.annotations == {LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION: "ipoib"}


def test_ipoib_with_ipam(ipoib_state, client):
    cr = IPoIBNetwork(
        name="ipo-ib", network_namespace="ipoib", master="eth0", ipam=json.dumps(IPAM, indent=2)
    )
    assert ipoib_state.sync(cr, None) == SyncState.READY
    config = json.loads(_nad(client, "ipo-ib", "ipoib")["spec"]["config"])
    assert config["ipam"] == IPAM


def test_ipoib_default_namespace(ipoib_state, client):
    cr = IPoIBNetwork(name="ipo-ib", network_namespace="", master="eth0")
    assert ipoib_state.sync(cr, None) == SyncState.READY
    assert _nad(client, "ipo-ib", "default")["metadata"]["name"] == "ipo-ib"


def test_ipoib_recreates_in_new_namespace(ipoib_state, client):
    cr = IPoIBNetwork(name="ipo-ib", network_namespace="", master="eth0")
    assert ipoib_state.sync(cr, None) == SyncState.READY
    assert ("NetworkAttachmentDefinition", "default", "ipo-ib") in client.objects

    cr.network_namespace = "ipoib"
    ipoib_state.sync(cr, None)
    assert ("NetworkAttachmentDefinition", "default", "ipo-ib") not in client.objects
    assert _nad(client, "ipo-ib", "ipoib")["metadata"]["namespace"] == "ipoib"
    assert cr.annotations[LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION] == "ipoib"
    assert client.updated == [
        {LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION: "default"},
        {LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION: "ipoib"},
    ]


def test_ipoib_namespace_changed(ipoib_state):
    nad = {"kind": "NetworkAttachmentDefinition", "metadata": {"name": "n", "namespace": "ipoib"}}
    assert ipoib_state.namespace_changed(IPoIBNetwork(name="n"), nad) is False
    moved = IPoIBNetwork(name="n", annotations={LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION: "default"})
    assert ipoib_state.namespace_changed(moved, nad) is True
    same = IPoIBNetwork(name="n", annotations={LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION: "ipoib"})
    assert ipoib_state.namespace_changed(same, nad) is False


def test_ipoib_update_namespace_annotation(ipoib_state, client):
    nad = {"kind": "NetworkAttachmentDefinition", "metadata": {"name": "n", "namespace": "ipoib"}}
    cr = IPoIBNetwork(name="n", annotations={"other": "value"})
    assert ipoib_state.update_namespace_annotation(cr, nad) is True
    assert cr.annotations == {LAST_IPOIB_NETWORK_NAMESPACE_ANNOTATION: "ipoib"}
    assert ipoib_state.update_namespace_annotation(cr, nad) is False
    assert len(client.updated) == 1


def test_ipoib_watch_sources(ipoib_state):
    assert set(ipoib_state.get_watch_sources()) == {"IPoIBNetwork", "NetworkAttachmentDefinition"}


def test_ipoib_without_client_fails(tmp_path):
    state = IPoIBNetworkState(_write(tmp_path, "noclient", IPOIB_TEMPLATE))
    with pytest.raises(StateError) as info:
        state.sync(IPoIBNetwork(name="n", master="eth0"), None)
    assert info.value.status == SyncState.ERROR


def test_missing_manifest_dir(tmp_path):
    with pytest.raises(StateError, match="manifest dir"):
        IPoIBNetworkState(tmp_path / "missing")