"""Client for the Multus delegate API served on a local unix socket."""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from dynamic_networks.exceptions import DelegateError
from dynamic_networks.interfaces import DelegateClient
from dynamic_networks.types import DelegateRequest, DelegateResponse

LOG = logging.getLogger(__name__)

DELEGATE_URL = "http://dummy/delegate"


def cni_args(request: DelegateRequest) -> str:
    return ";".join(
        [
            "IgnoreUnknown=true",
            f"K8S_POD_NAMESPACE={request.pod_namespace}",
            f"K8S_POD_NAME={request.pod_name}",
            f"K8S_POD_INFRA_CONTAINER_ID={request.container_id}",
            f"K8S_POD_UID={request.pod_uid}",
        ]
    )


def build_delegate_payload(request: DelegateRequest) -> Dict[str, Any]:
    """Return the JSON body of a delegate call.

    ``config`` is base64 encoded, the way the Go server decodes ``[]byte``.
    """

    payload: Dict[str, Any] = {
        "env": {
            "CNI_COMMAND": request.command.value,
            "CNI_CONTAINERID": request.container_id,
            "CNI_NETNS": request.netns,
            "CNI_IFNAME": request.ifname,
            "CNI_ARGS": cni_args(request),
        },
        "config": base64.b64encode(request.config).decode("ascii"),
    }
    attributes: Dict[str, Any] = {}
    if request.ip_request:
        attributes["ipRequest"] = list(request.ip_request)
    if request.mac_request:
        attributes["macRequest"] = request.mac_request
    if attributes:
        payload["interfaceAttributes"] = attributes
    return payload


class MultusClient(DelegateClient):
    def __init__(
        self,
        socket_path: str,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._socket_path = socket_path
        self._client = httpx.Client(
            transport=transport or httpx.HTTPTransport(uds=socket_path),
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    def invoke(self, request: DelegateRequest) -> DelegateResponse:
        LOG.debug(
            "invoking delegate %s for pod %s/%s (ifname=%r, netns=%s)",
            request.command.value,
            request.pod_namespace,
            request.pod_name,
            request.ifname,
            request.netns,
        )
        try:
            response = self._client.post(DELEGATE_URL, json=build_delegate_payload(request))
        except httpx.HTTPError as exc:
            raise DelegateError(
                f"failed to {request.command.value} delegate via {self._socket_path}: {exc}"
            ) from exc

        if response.status_code != httpx.codes.OK:
            raise DelegateError(
                f"CNI request failed with status {response.status_code}: '{response.text}'"
            )
        if not response.content:
            return DelegateResponse()

        try:
            data = response.json()
        except ValueError as exc:
            raise DelegateError(f"invalid delegate response: {exc}") from exc
        if not isinstance(data, dict):
            raise DelegateError(f"invalid delegate response: {data!r}")
        return DelegateResponse(result=data.get("Result", data.get("result")))
