"""Compute the pod's network-status annotation.

The status annotation is a JSON list with one entry per attached interface.
It is always rewritten as a whole: adding an interface appends one entry,
removing an interface filters the matching entries out, and every other entry
keeps its position.
"""

from __future__ import annotations

import ipaddress
import json
from typing import AbstractSet, Any, List, Mapping, Optional, Sequence

from .exceptions import AnnotationError
from .types import NETWORK_STATUS_ANNOTATION, NetworkSelectionElement, NetworkStatus


def parse_network_status(annotations: Mapping[str, str]) -> List[NetworkStatus]:
    """Return the status entries recorded on a pod; none when unannotated."""

    raw = annotations.get(NETWORK_STATUS_ANNOTATION)
    if raw is None or not raw.strip():
        return []
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise AnnotationError(f"network-status annotation is not valid JSON: {exc}") from exc
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise AnnotationError("network-status annotation must be a JSON list of objects")
    return [NetworkStatus.from_dict(entry) for entry in entries]


def dump_network_status(statuses: Sequence[NetworkStatus]) -> str:
    return json.dumps([status.to_dict() for status in statuses], separators=(",", ":"))


def _address(value: str) -> str:
    try:
        return str(ipaddress.ip_interface(value).ip)
    except ValueError:
        return value


def network_status_from_result(
    network_name: str,
    result: Optional[Mapping[str, Any]],
    interface_request: str = "",
) -> NetworkStatus:
    """Translate a CNI result into a status entry for ``network_name``.

    Only interfaces carrying a ``sandbox`` live inside the pod, so the last
    such interface provides the name and MAC.  A requested interface name
    takes precedence over the one reported by the plugin.
    """

    if result is None:
        result = {}
    if not isinstance(result, Mapping):
        raise AnnotationError(f"unexpected CNI result for {network_name}: {result!r}")

    interface = ""
    mac = ""
    for iface in result.get("interfaces") or []:
        if iface.get("sandbox"):
            interface = str(iface.get("name", ""))
            mac = str(iface.get("mac", ""))

    ips = []
    gateways = []
    for ipconfig in result.get("ips") or []:
        if ipconfig.get("address"):
            ips.append(_address(str(ipconfig["address"])))
        if ipconfig.get("gateway"):
            gateways.append(str(ipconfig["gateway"]))

    dns = {k: v for k, v in (result.get("dns") or {}).items() if v}

    return NetworkStatus(
        name=network_name,
        interface=interface_request or interface,
        ips=tuple(ips),
        mac=mac,
        dns=dns,
        gateway=tuple(gateways),
    )


def status_matches(
    status: NetworkStatus,
    element: NetworkSelectionElement,
    claimed: AbstractSet[str] = frozenset(),
) -> bool:
    """Return whether ``status`` records the attachment of ``element``.

    A selection with a requested interface only matches that interface.  A
    selection without one matches the entries of its network whose interface
    is not ``claimed`` by a selection that requests it explicitly.
    """

    if status.name != element.namespaced_name:
        return False
    if element.interface_request:
        return status.interface == element.interface_request
    return status.interface not in claimed


def find_interface_status(
    statuses: Sequence[NetworkStatus],
    element: NetworkSelectionElement,
    claimed: AbstractSet[str] = frozenset(),
) -> Optional[NetworkStatus]:
    return next((s for s in statuses if status_matches(s, element, claimed)), None)


def _same_slot(status: NetworkStatus, new: NetworkStatus) -> bool:
    if new.interface:
        return status.interface == new.interface
    # nameless entries are keyed by network
    return not status.interface and status.name == new.name


def add_interface_status(
    statuses: Sequence[NetworkStatus], new: NetworkStatus
) -> List[NetworkStatus]:
    # interface names are unique within the list
    kept = [s for s in statuses if not _same_slot(s, new)]
    kept.append(new)
    return kept


def remove_interface_status(
    statuses: Sequence[NetworkStatus],
    element: NetworkSelectionElement,
    claimed: AbstractSet[str] = frozenset(),
) -> List[NetworkStatus]:
    return [s for s in statuses if not status_matches(s, element, claimed)]
