import json

import pytest

from dynamic_networks.exceptions import AnnotationError
from dynamic_networks.status import (
    add_interface_status,
    dump_network_status,
    find_interface_status,
    network_status_from_result,
    parse_network_status,
    remove_interface_status,
)
from dynamic_networks.types import (
    NETWORK_STATUS_ANNOTATION,
    NetworkSelectionElement,
    NetworkStatus,
)

CNI_RESULT = {
    "cniVersion": "1.0.0",
    "interfaces": [
        {"name": "macvlan0", "mac": "0a:58:0a:01:01:0b"},
        {"name": "net1", "mac": "0a:58:0a:01:01:0b", "sandbox": "/proc/42/ns/net"},
    ],
    "ips": [{"address": "10.1.1.11/24", "gateway": "10.1.1.1", "interface": 1}],
    "dns": {"nameservers": ["10.1.1.53"], "search": []},
}

DEFAULT_STATUS = {
    "name": "kindnet",
    "interface": "eth0",
    "ips": ["10.244.1.4"],
    "mac": "02:42:ac:11:00:02",
    "default": True,
    "dns": {},
}


def test_missing_status_annotation_is_empty():
    assert parse_network_status({}) == []


def test_invalid_status_annotation_raises():
    with pytest.raises(AnnotationError):
        parse_network_status({NETWORK_STATUS_ANNOTATION: "not json"})
    with pytest.raises(AnnotationError):
        parse_network_status({NETWORK_STATUS_ANNOTATION: '{"name": "x"}'})


def test_status_from_result_uses_sandbox_interface():
    status = network_status_from_result("default/macvlan1-config", CNI_RESULT)

    assert status.name == "default/macvlan1-config"
    assert status.interface == "net1"
    assert status.mac == "0a:58:0a:01:01:0b"
    assert status.ips == ("10.1.1.11",)
    assert status.gateway == ("10.1.1.1",)
    assert status.dns == {"nameservers": ["10.1.1.53"]}
    assert status.default is False


def test_status_from_result_prefers_requested_interface():
    status = network_status_from_result("ns/net", CNI_RESULT, interface_request="ens4")

    assert status.interface == "ens4"


def test_status_from_empty_result():
    status = network_status_from_result("ns/net", None, interface_request="ens4")

    assert status == NetworkStatus(name="ns/net", interface="ens4")


def test_add_appends_and_keeps_interface_names_unique():
    existing = [NetworkStatus.from_dict(DEFAULT_STATUS), NetworkStatus(name="ns/a", interface="net1")]

    updated = add_interface_status(existing, NetworkStatus(name="ns/b", interface="net2"))
    assert [s.interface for s in updated] == ["eth0", "net1", "net2"]

    replaced = add_interface_status(updated, NetworkStatus(name="ns/c", interface="net1"))
    assert [(s.name, s.interface) for s in replaced] == [
        ("kindnet", "eth0"),
        ("ns/b", "net2"),
        ("ns/c", "net1"),
    ]


def test_remove_only_drops_matching_entries():
    a = NetworkStatus(name="ns/a", interface="net1")
    b = NetworkStatus(name="ns/b", interface="ens4")
    default = NetworkStatus.from_dict(DEFAULT_STATUS)

    updated = remove_interface_status(
        [default, a, b], NetworkSelectionElement(name="b", namespace="ns", interface_request="ens4")
    )

    assert updated == [default, a]


def test_remove_with_other_interface_keeps_entry():
    b = NetworkStatus(name="ns/b", interface="ens4")
    element = NetworkSelectionElement(name="b", namespace="ns", interface_request="ens5")

    assert remove_interface_status([b], element) == [b]
    assert find_interface_status([b], element) is None


def test_find_without_interface_request_matches_by_network():
    b = NetworkStatus(name="ns/b", interface="net3")

    assert find_interface_status([b], NetworkSelectionElement(name="b", namespace="ns")) == b


def test_status_round_trip_preserves_entries_and_order():
    produced = dump_network_status(
        add_interface_status(
            [NetworkStatus.from_dict(DEFAULT_STATUS)],
            network_status_from_result("default/macvlan1-config", CNI_RESULT),
        )
    )

    parsed = parse_network_status({NETWORK_STATUS_ANNOTATION: produced})

    assert json.loads(dump_network_status(parsed)) == json.loads(produced)
    assert [s.name for s in parsed] == ["kindnet", "default/macvlan1-config"]


def test_unknown_status_fields_survive_round_trip():
    raw = dict(DEFAULT_STATUS, **{"device-info": {"type": "pci", "version": "1.1.0"}})

    status = NetworkStatus.from_dict(raw)

    assert status.to_dict()["device-info"] == {"type": "pci", "version": "1.1.0"}


def test_selection_without_interface_ignores_claimed_entries():
    pinned = NetworkStatus(name="ns/b", interface="net1")
    chosen = NetworkStatus(name="ns/b", interface="net2")
    element = NetworkSelectionElement(name="b", namespace="ns")

    assert find_interface_status([pinned, chosen], element, claimed={"net1"}) == chosen
    assert remove_interface_status([pinned, chosen], element, claimed={"net1"}) == [pinned]
    assert find_interface_status([pinned], element, claimed={"net1"}) is None


def test_nameless_entries_are_unique_per_network():
    first = NetworkStatus(name="ns/a", ips=("10.0.0.1",))
    second = NetworkStatus(name="ns/a", ips=("10.0.0.2",))
    other = NetworkStatus(name="ns/b")

    updated = add_interface_status(add_interface_status([first, other], second), second)

    assert updated == [other, second]
