import base64
import json

import httpx
import pytest

from dynamic_networks.exceptions import DelegateError
from dynamic_networks.types import DelegateCommand, DelegateRequest
from dynamic_networks_agent.clients.multus import MultusClient, build_delegate_payload


def build_request(command=DelegateCommand.ADD, **overrides):
    values = dict(
        command=command,
        container_id="abc123",
        netns="/proc/4242/ns/net",
        ifname="net1",
        pod_namespace="default",
        pod_name="tenant",
        pod_uid="uid-1",
        config=b'{"type":"macvlan"}',
    )
    values.update(overrides)
    return DelegateRequest(**values)


def build_client(handler):
    return MultusClient("/run/multus/multus.sock", transport=httpx.MockTransport(handler))


def test_payload_carries_cni_environment_and_encoded_config():
    payload = build_delegate_payload(
        build_request(ip_request=("10.1.1.11/24",), mac_request="02:00:00:00:00:01")
    )

    env = payload["env"]
    assert env["CNI_COMMAND"] == "ADD"
    assert env["CNI_CONTAINERID"] == "abc123"
    assert env["CNI_NETNS"] == "/proc/4242/ns/net"
    assert env["CNI_IFNAME"] == "net1"
    assert "K8S_POD_NAMESPACE=default" in env["CNI_ARGS"].split(";")
    assert "K8S_POD_UID=uid-1" in env["CNI_ARGS"].split(";")
    assert base64.b64decode(payload["config"]) == b'{"type":"macvlan"}'
    assert payload["interfaceAttributes"] == {
        "ipRequest": ["10.1.1.11/24"],
        "macRequest": "02:00:00:00:00:01",
    }


def test_payload_omits_empty_interface_attributes():
    assert "interfaceAttributes" not in build_delegate_payload(build_request())


def test_invoke_posts_to_delegate_endpoint_and_returns_result():
    seen = []
    result = {"cniVersion": "1.0.0", "interfaces": [{"name": "net1", "sandbox": "/proc/4242/ns/net"}]}

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"Result": result})

    response = build_client(handler).invoke(build_request())

    assert response.result == result
    (request,) = seen
    assert request.method == "POST"
    assert request.url.path == "/delegate"
    assert json.loads(request.content)["env"]["CNI_COMMAND"] == "ADD"


def test_invoke_with_empty_body_returns_no_result():
    client = build_client(lambda request: httpx.Response(200))

    assert client.invoke(build_request(DelegateCommand.DEL)).result is None


def test_invoke_raises_on_error_status():
    client = build_client(lambda request: httpx.Response(500, text="plugin failed"))

    with pytest.raises(DelegateError, match="CNI request failed with status 500: 'plugin failed'"):
        client.invoke(build_request())


def test_invoke_raises_on_transport_error():
    def handler(request):
        raise httpx.ConnectError("socket not found", request=request)

    with pytest.raises(DelegateError):
        build_client(handler).invoke(build_request())


def test_invoke_raises_on_invalid_json():
    client = build_client(lambda request: httpx.Response(200, text="not json"))

    with pytest.raises(DelegateError):
        client.invoke(build_request())
