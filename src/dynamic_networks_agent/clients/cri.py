"""Container runtime adapter resolving a container's network namespace.

The runtime is queried through ``crictl inspect`` pointed at the configured
CRI socket.  All containers of a pod share the pod's network namespace, so
any running container of the pod resolves to the same path.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any, Dict, Optional

from dynamic_networks.exceptions import RuntimeClientError
from dynamic_networks.interfaces import ContainerRuntime

LOG = logging.getLogger(__name__)


def normalize_unix_endpoint(socket_path: str) -> str:
    """Return ``socket_path`` as a ``unix:///...`` endpoint."""

    if not socket_path:
        raise ValueError("runtime socket path is empty")
    if socket_path.startswith("unix://"):
        return socket_path
    if not socket_path.startswith("/"):
        socket_path = "/" + socket_path
    return "unix://" + socket_path


class CrictlRuntime(ContainerRuntime):
    """Resolve network namespaces of containerd or CRI-O containers."""

    def __init__(
        self,
        socket_path: str,
        runtime_type: str = "containerd",
        *,
        crictl: str = "crictl",
        timeout: float = 10.0,
    ) -> None:
        if runtime_type not in ("containerd", "crio"):
            raise ValueError(f"unsupported container runtime '{runtime_type}'")
        self._endpoint = normalize_unix_endpoint(socket_path)
        self._runtime_type = runtime_type
        self._crictl = crictl
        self._timeout = timeout

    def inspect(self, container_id: str) -> Dict[str, Any]:
        cmd = [
            self._crictl,
            "--runtime-endpoint",
            self._endpoint,
            "inspect",
            "--output",
            "json",
            container_id,
        ]
        LOG.debug("running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self._timeout, check=False
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise RuntimeClientError(f"failed to inspect container {container_id}: {exc}") from exc
        if proc.returncode != 0:
            raise RuntimeClientError(
                f"failed to inspect container {container_id}: {proc.stderr.strip()}"
            )
        try:
            data = json.loads(proc.stdout)
        except json.JSONDecodeError as exc:
            raise RuntimeClientError(
                f"unexpected output inspecting container {container_id}: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise RuntimeClientError(f"unexpected output inspecting container {container_id}")
        return data

    @staticmethod
    def _spec_netns_path(info: Dict[str, Any]) -> Optional[str]:
        namespaces = (
            ((info.get("runtimeSpec") or {}).get("linux") or {}).get("namespaces") or []
        )
        for namespace in namespaces:
            if namespace.get("type") == "network" and namespace.get("path"):
                return str(namespace["path"])
        return None

    def netns_path(self, container_id: str) -> str:
        info = self.inspect(container_id).get("info") or {}

        if self._runtime_type == "crio":
            path = self._spec_netns_path(info)
            if path:
                return path

        pid = info.get("pid")
        if not pid:
            raise RuntimeClientError(
                f"failed to get netns for container [{container_id}]: no pid reported"
            )
        return f"/proc/{int(pid)}/ns/net"
