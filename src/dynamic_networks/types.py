"""Data structures shared by the pod networks controller.

These light-weight dataclasses describe network selections, interface status
entries and pods without tying the reconciliation core to the ``kubernetes``
client models.  The agent converts API objects into :class:`Pod` at the edge
so the controller and its tests only ever deal with plain Python values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

NETWORKS_ANNOTATION = "k8s.v1.cni.cncf.io/networks"
NETWORK_STATUS_ANNOTATION = "k8s.v1.cni.cncf.io/network-status"


@dataclass(frozen=True)
class NetworkSelectionElement:
    """One entry of the pod's networks annotation.

    Attributes
    ----------
    name:
        Name of the referenced network-attachment-definition.
    namespace:
        Namespace of the definition; defaults to the pod's namespace.
    interface_request:
        Interface name requested inside the pod, ``""`` when the plugin
        picks one.
    ips:
        Static addresses requested for the interface.
    mac:
        Static MAC address requested for the interface.
    params:
        Any other key of the JSON form (``cni-args``, ``default-route``,
        ...), carried verbatim.
    """

    name: str
    namespace: str
    interface_request: str = ""
    ips: Tuple[str, ...] = ()
    mac: str = ""
    params: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def namespaced_name(self) -> str:
        return f"{self.namespace}/{self.name}"

    def key(self) -> str:
        """Return the identity used to diff two selection lists."""

        if self.interface_request:
            return f"{self.namespace}/{self.name}/{self.interface_request}"
        return self.namespaced_name


@dataclass(frozen=True)
class NetworkStatus:
    """One entry of the pod's network-status annotation."""

    name: str
    interface: str = ""
    ips: Tuple[str, ...] = ()
    mac: str = ""
    default: bool = False
    dns: Mapping[str, Any] = field(default_factory=dict)
    gateway: Tuple[str, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NetworkStatus":
        known = {"name", "interface", "ips", "mac", "default", "dns", "gateway"}
        return cls(
            name=str(data.get("name", "")),
            interface=str(data.get("interface", "")),
            ips=tuple(str(ip) for ip in data.get("ips") or ()),
            mac=str(data.get("mac", "")),
            default=bool(data.get("default", False)),
            dns=dict(data.get("dns") or {}),
            gateway=tuple(str(gw) for gw in data.get("gateway") or ()),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.interface:
            data["interface"] = self.interface
        if self.ips:
            data["ips"] = list(self.ips)
        if self.mac:
            data["mac"] = self.mac
        if self.default:
            data["default"] = True
        if self.dns:
            data["dns"] = dict(self.dns)
        if self.gateway:
            data["gateway"] = list(self.gateway)
        data.update(self.extra)
        return data


@dataclass
class Pod:
    """The subset of a pod the controller reads and writes."""

    namespace: str
    name: str
    uid: str = ""
    annotations: Dict[str, str] = field(default_factory=dict)
    container_ids: List[str] = field(default_factory=list)
    resource_version: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    def container_id(self) -> str:
        """Return the id of the first container, without its runtime scheme.

        Every container of a pod shares the pod's network namespace, so the
        first reported container is enough to locate it.  Ids are reported as
        ``containerd://<id>`` or ``cri-o://<id>``.
        """

        if not self.container_ids:
            return ""
        raw = self.container_ids[0] or ""
        _, sep, cid = raw.partition("//")
        return cid if sep else raw


class DelegateCommand(Enum):
    """CNI commands understood by the Multus delegate API."""

    ADD = "ADD"
    DEL = "DEL"


@dataclass(frozen=True)
class DelegateRequest:
    command: DelegateCommand
    container_id: str
    netns: str
    ifname: str
    pod_namespace: str
    pod_name: str
    pod_uid: str
    config: bytes
    ip_request: Sequence[str] = ()
    mac_request: str = ""


@dataclass(frozen=True)
class DelegateResponse:
    """Result returned by a delegate; ``result`` is the CNI result object."""

    result: Optional[Mapping[str, Any]] = None
