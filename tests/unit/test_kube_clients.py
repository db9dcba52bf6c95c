import pytest
from kubernetes.client import ApiException, V1ObjectMeta, V1Pod

from dynamic_networks.exceptions import ConflictError, DefinitionNotFoundError, PodNotFoundError
from dynamic_networks.types import Pod
from dynamic_networks_agent.clients.kube import (
    KubeEventRecorder,
    KubePodClient,
    NetworkAttachmentDefinitionClient,
)


class FakeCoreApi:
    def __init__(self, error=None):
        self.error = error
        self.patches = []
        self.events = []

    def read_namespaced_pod(self, name, namespace):
        if self.error:
            raise self.error
        return V1Pod(metadata=V1ObjectMeta(namespace=namespace, name=name, resource_version="7"))

    def patch_namespaced_pod(self, name, namespace, body):
        if self.error:
            raise self.error
        self.patches.append((namespace, name, body))
        return V1Pod(
            metadata=V1ObjectMeta(
                namespace=namespace,
                name=name,
                resource_version="8",
                annotations=body["metadata"]["annotations"],
            )
        )

    def create_namespaced_event(self, namespace, body):
        if self.error:
            raise self.error
        self.events.append((namespace, body))


class FakeCustomApi:
    def __init__(self, objects):
        self.objects = objects

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        assert (group, version, plural) == ("k8s.cni.cncf.io", "v1", "network-attachment-definitions")
        try:
            return self.objects[(namespace, name)]
        except KeyError:
            raise ApiException(status=404, reason="Not Found") from None


def build_pod():
    return Pod(namespace="default", name="tenant", uid="uid-1", resource_version="7")


def test_patch_is_conditional_on_resource_version():
    core_api = FakeCoreApi()

    updated = KubePodClient(core_api).update_annotations(build_pod(), {"key": "value"})

    ((namespace, name, body),) = core_api.patches
    assert (namespace, name) == ("default", "tenant")
    assert body == {"metadata": {"annotations": {"key": "value"}, "resourceVersion": "7"}}
    assert updated.resource_version == "8"
    assert updated.annotations == {"key": "value"}


@pytest.mark.parametrize(
    "status, error",
    [(409, ConflictError), (404, PodNotFoundError)],
)
def test_patch_errors_are_translated(status, error):
    client = KubePodClient(FakeCoreApi(ApiException(status=status)))

    with pytest.raises(error):
        client.update_annotations(build_pod(), {"key": "value"})


def test_read_missing_pod_raises():
    with pytest.raises(PodNotFoundError):
        KubePodClient(FakeCoreApi(ApiException(status=404))).read("default", "tenant")


def test_read_propagates_other_api_errors():
    with pytest.raises(ApiException):
        KubePodClient(FakeCoreApi(ApiException(status=500))).read("default", "tenant")


def test_definition_config_is_returned_as_bytes():
    client = NetworkAttachmentDefinitionClient(
        FakeCustomApi({("default", "macvlan1-config"): {"spec": {"config": '{"type":"macvlan"}'}}})
    )

    assert client.get_config("default", "macvlan1-config") == b'{"type":"macvlan"}'
    with pytest.raises(DefinitionNotFoundError):
        client.get_config("default", "missing")


def test_event_targets_pod():
    core_api = FakeCoreApi()

    KubeEventRecorder(core_api, host="worker-1").event(
        build_pod(), "Normal", "AddedInterface", "pod [default/tenant]: added interface net1 to network: a"
    )

    ((namespace, body),) = core_api.events
    assert namespace == "default"
    assert body["involvedObject"]["uid"] == "uid-1"
    assert body["reason"] == "AddedInterface"
    assert body["source"] == {"component": "pod-networks-updates", "host": "worker-1"}


def test_event_failure_is_not_raised():
    recorder = KubeEventRecorder(FakeCoreApi(ApiException(status=403)))

    recorder.event(build_pod(), "Normal", "RemovedInterface", "message")
