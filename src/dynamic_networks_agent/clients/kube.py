"""Kubernetes API adapters: pods, network-attachment-definitions and events."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from kubernetes.client import ApiException, CoreV1Api, CustomObjectsApi

from dynamic_networks.controller import ADVERTISED_NAME
from dynamic_networks.exceptions import ConflictError, DefinitionNotFoundError, PodNotFoundError
from dynamic_networks.interfaces import AttachmentDefinitionStore, EventRecorder
from dynamic_networks.types import Pod

LOG = logging.getLogger(__name__)

NAD_GROUP = "k8s.cni.cncf.io"
NAD_VERSION = "v1"
NAD_PLURAL = "network-attachment-definitions"


def pod_from_api(obj: Any) -> Pod:
    """Convert a ``V1Pod`` into the controller's :class:`Pod`."""

    metadata = obj.metadata
    container_statuses = (obj.status.container_statuses if obj.status else None) or []
    return Pod(
        namespace=metadata.namespace,
        name=metadata.name,
        uid=metadata.uid or "",
        annotations=dict(metadata.annotations or {}),
        container_ids=[status.container_id or "" for status in container_statuses],
        resource_version=metadata.resource_version or "",
    )


def utc_now_rfc3339() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class KubePodClient:
    """Live pod reads and conditional annotation writes."""

    def __init__(self, core_api: CoreV1Api) -> None:
        self._core_api = core_api

    def read(self, namespace: str, name: str) -> Pod:
        try:
            obj = self._core_api.read_namespaced_pod(name, namespace)
        except ApiException as exc:
            if exc.status == 404:
                raise PodNotFoundError(namespace, name) from exc
            raise
        return pod_from_api(obj)

    def update_annotations(self, pod: Pod, annotations: Mapping[str, str]) -> Pod:
        """Patch ``annotations`` onto ``pod``.

        The patch carries ``metadata.resourceVersion`` so the API server
        rejects it with 409 Conflict when the pod changed since it was read.
        """

        metadata: Dict[str, Any] = {"annotations": dict(annotations)}
        if pod.resource_version:
            metadata["resourceVersion"] = pod.resource_version
        try:
            obj = self._core_api.patch_namespaced_pod(
                pod.name, pod.namespace, {"metadata": metadata}
            )
        except ApiException as exc:
            if exc.status == 409:
                raise ConflictError(
                    f"pod {pod.namespace}/{pod.name} changed since resourceVersion "
                    f"{pod.resource_version}"
                ) from exc
            if exc.status == 404:
                raise PodNotFoundError(pod.namespace, pod.name) from exc
            raise
        return pod_from_api(obj)


class NetworkAttachmentDefinitionClient(AttachmentDefinitionStore):
    def __init__(self, custom_api: CustomObjectsApi) -> None:
        self._custom_api = custom_api

    def get_config(self, namespace: str, name: str) -> bytes:
        try:
            obj = self._custom_api.get_namespaced_custom_object(
                NAD_GROUP, NAD_VERSION, namespace, NAD_PLURAL, name
            )
        except ApiException as exc:
            if exc.status == 404:
                raise DefinitionNotFoundError(namespace, name) from exc
            raise
        config = (obj.get("spec") or {}).get("config") or ""
        return config.encode("utf-8")


class KubeEventRecorder(EventRecorder):
    """Create core/v1 events on pods.

    Recording is best effort: a failure is logged and never fails the
    request that triggered the event.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        component: str = ADVERTISED_NAME,
        host: Optional[str] = None,
    ) -> None:
        self._core_api = core_api
        self._component = component
        self._host = host

    def event(self, pod: Pod, event_type: str, reason: str, message: str) -> None:
        now = utc_now_rfc3339()
        source = {"component": self._component}
        if self._host:
            source["host"] = self._host
        body = {
            "metadata": {"generateName": f"{pod.name}.", "namespace": pod.namespace},
            "involvedObject": {
                "apiVersion": "v1",
                "kind": "Pod",
                "namespace": pod.namespace,
                "name": pod.name,
                "uid": pod.uid,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": source,
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
        try:
            self._core_api.create_namespaced_event(pod.namespace, body)
        except ApiException as exc:
            LOG.warning(
                "failed to record %s event on pod %s/%s: %s",
                reason,
                pod.namespace,
                pod.name,
                exc,
            )
