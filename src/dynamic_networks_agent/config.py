"""YAML / JSON configuration loader for the dynamic networks controller."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from dynamic_networks.controller import MAX_RETRIES, STATUS_UPDATE_ATTEMPTS

CRI_TYPES = ("containerd", "crio")

DEFAULT_CRI_SOCKET_PATHS = {
    "containerd": "/run/containerd/containerd.sock",
    "crio": "/run/crio/crio.sock",
}
DEFAULT_MULTUS_SOCKET_PATH = "/run/multus/multus.sock"


@dataclass
class ControllerConfig:
    workers: int = 1
    max_retries: int = MAX_RETRIES
    status_update_attempts: int = STATUS_UPDATE_ATTEMPTS
    delegate_timeout: Optional[float] = None


@dataclass
class KubernetesConfig:
    kubeconfig: Optional[Path] = None
    node_name: Optional[str] = None


@dataclass
class AgentConfig:
    cri_socket_path: str
    cri_type: str
    multus_socket_path: str = DEFAULT_MULTUS_SOCKET_PATH
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)


def _section(data: dict, key: str) -> dict:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{key}' section must be a mapping")
    return section


def _parse_controller(section: dict) -> ControllerConfig:
    workers = int(section.get("workers", 1))
    if workers < 1:
        raise ValueError("'controller.workers' must be at least 1")
    attempts = int(section.get("statusUpdateAttempts", STATUS_UPDATE_ATTEMPTS))
    if attempts < 1:
        raise ValueError("'controller.statusUpdateAttempts' must be at least 1")
    timeout = section.get("delegateTimeout")
    return ControllerConfig(
        workers=workers,
        max_retries=int(section.get("maxRetries", MAX_RETRIES)),
        status_update_attempts=attempts,
        delegate_timeout=float(timeout) if timeout is not None else None,
    )


def _parse_kubernetes(section: dict) -> KubernetesConfig:
    kubeconfig = section.get("kubeconfig")
    return KubernetesConfig(
        kubeconfig=Path(kubeconfig) if kubeconfig else None,
        node_name=section.get("nodeName") or os.environ.get("NODE_NAME") or None,
    )


def load_config(path: Path) -> AgentConfig:
    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict):
        raise ValueError("Controller configuration must be a mapping")

    cri_type = str(data.get("criType", "containerd")).lower()
    if cri_type not in CRI_TYPES:
        raise ValueError(
            f"Unsupported 'criType' {cri_type!r}; expected one of {', '.join(CRI_TYPES)}"
        )

    return AgentConfig(
        cri_socket_path=str(data.get("criSocketPath") or DEFAULT_CRI_SOCKET_PATHS[cri_type]),
        cri_type=cri_type,
        multus_socket_path=str(data.get("multusSocketPath") or DEFAULT_MULTUS_SOCKET_PATH),
        controller=_parse_controller(_section(data, "controller")),
        kubernetes=_parse_kubernetes(_section(data, "kubernetes")),
    )
