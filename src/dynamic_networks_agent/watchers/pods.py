"""List/watch pod informer backing the controller's pod store."""

from __future__ import annotations

import logging
from threading import Event, Lock, Thread
from typing import Any, Dict, List, Mapping, Optional, Tuple

from kubernetes import watch
from kubernetes.client import CoreV1Api

from dynamic_networks.exceptions import PodNotFoundError
from dynamic_networks.interfaces import PodStore, PodUpdateHandler
from dynamic_networks.types import Pod

from ..clients.kube import KubePodClient, pod_from_api

LOG = logging.getLogger(__name__)


class PodInformer(Thread, PodStore):
    """Keep an in-memory copy of pods and publish their updates.

    The informer lists pods, then watches from the list's resourceVersion.
    When the watch expires or fails it lists again; pods that changed in
    between are published as updates too.  Reads of :meth:`get` are served
    from the cache, writes go straight to the API server.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        stop_event: Event,
        *,
        node_name: Optional[str] = None,
        pod_client: Optional[KubePodClient] = None,
        watch_timeout: int = 300,
        relist_interval: float = 1.0,
    ) -> None:
        super().__init__(daemon=True, name="pod-informer")
        self._core_api = core_api
        self._client = pod_client or KubePodClient(core_api)
        self._stop_event = stop_event
        self._node_name = node_name
        self._watch_timeout = watch_timeout
        self._relist_interval = relist_interval
        self._cache: Dict[Tuple[str, str], Pod] = {}
        self._cache_lock = Lock()
        self._handlers: List[PodUpdateHandler] = []
        self._synced = Event()
        self._watch: Optional[watch.Watch] = None

    # ------------------------------------------------------------------
    # PodStore
    # ------------------------------------------------------------------
    def get(self, namespace: str, name: str) -> Pod:
        with self._cache_lock:
            pod = self._cache.get((namespace, name))
        if pod is None:
            raise PodNotFoundError(namespace, name)
        return pod

    def read(self, namespace: str, name: str) -> Pod:
        return self._client.read(namespace, name)

    def update_annotations(self, pod: Pod, annotations: Mapping[str, str]) -> Pod:
        return self._client.update_annotations(pod, annotations)

    def subscribe(self, handler: PodUpdateHandler) -> None:
        self._handlers.append(handler)

    # ------------------------------------------------------------------
    # List / watch loop
    # ------------------------------------------------------------------
    def wait_for_sync(self, timeout: Optional[float] = None) -> bool:
        return self._synced.wait(timeout)

    def stop(self) -> None:
        self._stop_event.set()
        active = self._watch
        if active is not None:
            active.stop()

    def run(self) -> None:
        LOG.info("starting pod informer (node=%s)", self._node_name or "<all>")
        while not self._stop_event.is_set():
            try:
                resource_version = self.list_pods()
                self.watch_pods(resource_version)
            except Exception:  # pragma: no cover - logged and re-listed
                LOG.exception("pod informer encountered an error; re-listing")
            self._stop_event.wait(self._relist_interval)
        LOG.info("stopping pod informer")

    def _selector(self) -> Dict[str, str]:
        if self._node_name:
            return {"field_selector": f"spec.nodeName={self._node_name}"}
        return {}

    def list_pods(self) -> str:
        pod_list = self._core_api.list_pod_for_all_namespaces(**self._selector())
        fresh = {}
        for obj in pod_list.items:
            pod = pod_from_api(obj)
            fresh[pod.key] = pod

        with self._cache_lock:
            previous = self._cache
            self._cache = fresh
        for key, pod in fresh.items():
            old = previous.get(key)
            if old is not None and old.resource_version != pod.resource_version:
                self._dispatch(old, pod)

        self._synced.set()
        LOG.debug("pod informer listed %d pods", len(fresh))
        return pod_list.metadata.resource_version

    def watch_pods(self, resource_version: str) -> None:
        active = self._watch = watch.Watch()
        try:
            for event in active.stream(
                self._core_api.list_pod_for_all_namespaces,
                resource_version=resource_version,
                timeout_seconds=self._watch_timeout,
                **self._selector(),
            ):
                if self._stop_event.is_set():
                    break
                if not self.handle_event(event["type"], event["object"]):
                    break
        finally:
            active.stop()
            self._watch = None

    def handle_event(self, event_type: str, obj: Any) -> bool:
        """Apply one watch event; return ``False`` when a re-list is needed."""

        if event_type == "ERROR":
            LOG.warning("pod watch returned an error, re-listing: %s", obj)
            return False

        pod = pod_from_api(obj)
        with self._cache_lock:
            if event_type == "DELETED":
                self._cache.pop(pod.key, None)
                return True
            old = self._cache.get(pod.key)
            self._cache[pod.key] = pod

        if old is not None and event_type in ("ADDED", "MODIFIED"):
            self._dispatch(old, pod)
        return True

    def _dispatch(self, old: Pod, new: Pod) -> None:
        for handler in self._handlers:
            try:
                handler(old, new)
            except Exception:  # pragma: no cover - handler bugs must not kill the watch
                LOG.exception("pod update handler failed for %s/%s", new.namespace, new.name)
