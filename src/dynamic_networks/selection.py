"""Parse the networks annotation and diff two selection lists."""

from __future__ import annotations

import json
import re
from typing import Any, FrozenSet, Iterable, List, Mapping, Sequence

from .exceptions import AnnotationError
from .types import NETWORKS_ANNOTATION, NetworkSelectionElement

# DNS-1123 subdomain, the naming rule for namespaces and definitions.
_DNS1123_SUBDOMAIN = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)
_MAX_NAME_LENGTH = 253
_MAX_INTERFACE_LENGTH = 15

_ELEMENT_FIELDS = {"name", "namespace", "interface", "ips", "mac"}


def namespaced_name(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def _validate_name(kind: str, value: str) -> None:
    if not value or len(value) > _MAX_NAME_LENGTH or not _DNS1123_SUBDOMAIN.match(value):
        raise AnnotationError(f"invalid {kind} {value!r} in networks annotation")


def _validate_interface(value: str) -> None:
    if not value or len(value) > _MAX_INTERFACE_LENGTH or "/" in value:
        raise AnnotationError(f"invalid interface name {value!r} in networks annotation")


def _build_element(
    name: str,
    namespace: str,
    interface: str = "",
    ips: Iterable[str] = (),
    mac: str = "",
    params: Mapping[str, Any] | None = None,
) -> NetworkSelectionElement:
    _validate_name("network name", name)
    _validate_name("namespace", namespace)
    if interface:
        _validate_interface(interface)
    return NetworkSelectionElement(
        name=name,
        namespace=namespace,
        interface_request=interface,
        ips=tuple(str(ip) for ip in ips),
        mac=mac,
        params=dict(params or {}),
    )


def _parse_json(value: str, default_namespace: str) -> List[NetworkSelectionElement]:
    try:
        entries = json.loads(value)
    except json.JSONDecodeError as exc:
        raise AnnotationError(f"networks annotation is not valid JSON: {exc}") from exc
    if not isinstance(entries, list):
        raise AnnotationError("networks annotation must be a JSON list")

    elements = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise AnnotationError(f"network selection {entry!r} is not an object")
        if "name" not in entry:
            raise AnnotationError(f"network selection {entry!r} has no 'name'")
        ips = entry.get("ips") or []
        if not isinstance(ips, list):
            raise AnnotationError(f"network selection {entry!r}: 'ips' must be a list")
        elements.append(
            _build_element(
                name=str(entry["name"]),
                namespace=str(entry.get("namespace") or default_namespace),
                interface=str(entry.get("interface") or ""),
                ips=ips,
                mac=str(entry.get("mac") or ""),
                params={k: v for k, v in entry.items() if k not in _ELEMENT_FIELDS},
            )
        )
    return elements


def _parse_shorthand(item: str, default_namespace: str) -> NetworkSelectionElement:
    # [namespace/]name[@interface]
    reference, sep, interface = item.partition("@")
    if sep and not interface:
        raise AnnotationError(f"network selection {item!r} has an empty interface")
    namespace, slash, name = reference.rpartition("/")
    if not slash:
        namespace = default_namespace
    elif not namespace:
        raise AnnotationError(f"network selection {item!r} has an empty namespace")
    return _build_element(name=name, namespace=namespace, interface=interface)


def parse_network_selection(
    value: str, default_namespace: str
) -> List[NetworkSelectionElement]:
    """Parse the value of the networks annotation.

    Both the JSON list form and the comma separated
    ``[namespace/]name[@interface]`` shorthand are accepted.  An empty value
    means "no networks" and yields an empty list.
    """

    stripped = value.strip()
    if not stripped:
        return []
    if stripped.startswith("["):
        return _parse_json(stripped, default_namespace)
    return [
        _parse_shorthand(item.strip(), default_namespace)
        for item in stripped.split(",")
        if item.strip()
    ]


def network_selection_elements(
    annotations: Mapping[str, str], default_namespace: str
) -> List[NetworkSelectionElement]:
    """Return the selections of an annotation map.

    A missing annotation is an error rather than an empty list so callers
    never mistake it for a request to remove every network.
    """

    if NETWORKS_ANNOTATION not in annotations:
        raise AnnotationError(f"pod has no {NETWORKS_ANNOTATION!r} annotation")
    return parse_network_selection(annotations[NETWORKS_ANNOTATION], default_namespace)


def index_key(element: NetworkSelectionElement) -> str:
    return element.key()


def exclusive_networks(
    needles: Sequence[NetworkSelectionElement],
    haystack: Sequence[NetworkSelectionElement],
) -> List[NetworkSelectionElement]:
    """Return the ``needles`` whose identity key is not in ``haystack``.

    Needle order is preserved so requests process networks in annotation
    order.  Only keys are compared: changing the addresses of an existing
    selection is not a difference.
    """

    present = {index_key(element) for element in haystack}
    return [element for element in needles if index_key(element) not in present]


def claimed_interfaces(
    annotations: Mapping[str, str], default_namespace: str
) -> FrozenSet[str]:
    """Return the interface names requested explicitly by the pod's selections."""

    selections = parse_network_selection(
        annotations.get(NETWORKS_ANNOTATION, ""), default_namespace
    )
    return frozenset(e.interface_request for e in selections if e.interface_request)
