"""Adapters binding the controller to Kubernetes, the CRI and Multus."""

from .cri import CrictlRuntime  # noqa: F401
from .kube import (  # noqa: F401
    KubeEventRecorder,
    KubePodClient,
    NetworkAttachmentDefinitionClient,
    pod_from_api,
)
from .multus import MultusClient  # noqa: F401

__all__ = [
    "CrictlRuntime",
    "KubeEventRecorder",
    "KubePodClient",
    "MultusClient",
    "NetworkAttachmentDefinitionClient",
    "pod_from_api",
]
