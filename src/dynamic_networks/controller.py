"""Pod networks controller.

Watches pod updates, diffs the networks annotation of the old and new pod and
turns the difference into :class:`~dynamic_networks.requests.AddNetworks` /
:class:`~dynamic_networks.requests.RemoveNetworks` requests.  Worker threads
pull those requests from a rate limited queue and, network by network, call
the Multus delegate API and rewrite the pod's network-status annotation.

A request stops at its first failing network and is retried as a whole.  The
controller remembers how many networks of a request earlier deliveries
completed and skips them on replay.  Against the live pod, an ADD whose
requested interface is already listed in the status is skipped, and so is a
REMOVE whose attachment is no longer listed.  A selection without an interface
never claims an entry owned by a selection that requests that interface.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .exceptions import AnnotationError, ConflictError, RuntimeClientError, StatusConflictError
from .interfaces import (
    AttachmentDefinitionStore,
    ContainerRuntime,
    DelegateClient,
    EventRecorder,
    PodStore,
)
from .queue import RateLimitingQueue
from .requests import AddNetworks, AttachmentRequest, RemoveNetworks
from .selection import (
    claimed_interfaces,
    exclusive_networks,
    namespaced_name,
    network_selection_elements,
)
from .status import (
    add_interface_status,
    dump_network_status,
    find_interface_status,
    network_status_from_result,
    parse_network_status,
    remove_interface_status,
)
from .types import (
    NETWORK_STATUS_ANNOTATION,
    DelegateCommand,
    DelegateRequest,
    NetworkSelectionElement,
    NetworkStatus,
    Pod,
)

LOG = logging.getLogger(__name__)

ADVERTISED_NAME = "pod-networks-updates"
MAX_RETRIES = 2
STATUS_UPDATE_ATTEMPTS = 3

EVENT_TYPE_NORMAL = "Normal"
REASON_ADDED = "AddedInterface"
REASON_REMOVED = "RemovedInterface"

StatusMutation = Callable[[List[NetworkStatus]], List[NetworkStatus]]


class _PodLocks:
    """Reference counted locks, one per pod being processed."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], List] = {}

    @contextmanager
    def hold(self, key: Tuple[str, str]) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class PodNetworksController:
    """Attach and detach pod interfaces following the networks annotation."""

    def __init__(
        self,
        pods: PodStore,
        definitions: AttachmentDefinitionStore,
        runtime: ContainerRuntime,
        delegate: DelegateClient,
        recorder: Optional[EventRecorder] = None,
        *,
        queue: Optional[RateLimitingQueue] = None,
        max_retries: int = MAX_RETRIES,
        status_update_attempts: int = STATUS_UPDATE_ATTEMPTS,
    ) -> None:
        if status_update_attempts < 1:
            raise ValueError("status_update_attempts must be at least 1")
        self._pods = pods
        self._definitions = definitions
        self._runtime = runtime
        self._delegate = delegate
        self._recorder = recorder
        self._queue = queue or RateLimitingQueue(name=ADVERTISED_NAME)
        self._max_retries = max_retries
        self._status_update_attempts = status_update_attempts
        self._pod_locks = _PodLocks()
        # networks of a request already handled by earlier deliveries
        self._progress: Dict[AttachmentRequest, int] = {}
        self._progress_lock = threading.Lock()

        pods.subscribe(self.handle_pod_update)

    @property
    def queue(self) -> RateLimitingQueue:
        return self._queue

    # ------------------------------------------------------------------
    # Worker lifecycle
    # ------------------------------------------------------------------
    def run(self, stop_event: threading.Event, workers: int = 1) -> None:
        """Process requests with ``workers`` threads until ``stop_event`` is set.

        Queued requests are drained before the workers exit.
        """

        LOG.info("starting network controller with %d worker(s)", workers)
        threads = [
            threading.Thread(
                target=self.worker, name=f"{ADVERTISED_NAME}-{index}", daemon=True
            )
            for index in range(workers)
        ]
        for thread in threads:
            thread.start()

        try:
            stop_event.wait()
        finally:
            LOG.info("shutting down network controller")
            self._queue.shut_down()
            for thread in threads:
                thread.join()

    def worker(self) -> None:
        while self.process_next_work_item():
            pass

    def process_next_work_item(self) -> bool:
        request, shutdown = self._queue.get()
        if shutdown:
            return False

        try:
            LOG.info("extracted request %s from the queue", request)
            try:
                self.handle_request(request)
            except Exception as exc:  # every failure goes through the retry policy
                self.handle_result(request, exc)
            else:
                self.handle_result(request, None)
        finally:
            self._queue.done(request)
        return True

    def handle_result(self, request: AttachmentRequest, error: Optional[Exception]) -> None:
        if error is None:
            self._forget(request)
            return

        retries = self._queue.num_requeues(request)
        if retries <= self._max_retries:
            LOG.error("re-queued request %s: %s", request, error)
            self._queue.add_rate_limited(request)
            return

        LOG.error("dropping request %s after %d retries: %s", request, retries, error)
        self._forget(request)

    # ------------------------------------------------------------------
    # Change detection
    # ------------------------------------------------------------------
    def handle_pod_update(self, old: Pod, new: Pod) -> None:
        if old.annotations == new.annotations:
            return

        namespace, name = old.namespace, old.name
        pod_name = namespaced_name(namespace, name)
        LOG.debug("pod [%s] updated", pod_name)

        try:
            old_networks = network_selection_elements(old.annotations, namespace)
        except AnnotationError as exc:
            LOG.error("failed to compute the network selection elements from the *old* pod %s: %s", pod_name, exc)
            return
        try:
            new_networks = network_selection_elements(new.annotations, namespace)
        except AnnotationError as exc:
            LOG.error("failed to compute the network selection elements from the *new* pod %s: %s", pod_name, exc)
            return

        to_add = exclusive_networks(new_networks, old_networks)
        to_remove = exclusive_networks(old_networks, new_networks)
        LOG.info("%d attachments to add to pod %s", len(to_add), pod_name)
        LOG.info("%d attachments to remove from pod %s", len(to_remove), pod_name)
        if not to_add and not to_remove:
            return

        try:
            netns = self._netns_path(new)
        except RuntimeClientError as exc:
            LOG.error("failed to figure out the pod's network namespace: %s", exc)
            return

        if to_add:
            self._queue.add(AddNetworks(namespace, name, tuple(to_add), netns))
        if to_remove:
            self._queue.add(RemoveNetworks(namespace, name, tuple(to_remove), netns))

    def _netns_path(self, pod: Pod) -> str:
        container_id = pod.container_id()
        if not container_id:
            return ""
        return self._runtime.netns_path(container_id)

    # ------------------------------------------------------------------
    # Request orchestration
    # ------------------------------------------------------------------
    def handle_request(self, request: AttachmentRequest) -> None:
        if isinstance(request, AddNetworks):
            handler = self._add_networks
        elif isinstance(request, RemoveNetworks):
            handler = self._remove_networks
        else:
            raise TypeError(f"Unsupported request type: {type(request)!r}")

        with self._pod_locks.hold((request.pod_namespace, request.pod_name)):
            self._pods.get(request.pod_namespace, request.pod_name)
            # the cache may lag our own status writes
            pod = self._pods.read(request.pod_namespace, request.pod_name)
            handler(request, pod)
        LOG.info("successfully processed %s", request)

    def _add_networks(self, request: AddNetworks, pod: Pod) -> None:
        completed = self._completed(request)
        for index, network in enumerate(request.networks):
            LOG.info("network to add: %s", network.key())
            if index < completed:
                LOG.info("network %s added by an earlier delivery, skipping", network.key())
                continue
            if network.interface_request and find_interface_status(
                parse_network_status(pod.annotations), network
            ):
                LOG.info(
                    "network %s already attached to pod %s, skipping",
                    network.key(),
                    namespaced_name(pod.namespace, pod.name),
                )
                self._mark_completed(request, index + 1)
                continue

            config = self._definitions.get_config(network.namespace, network.name)
            response = self._delegate.invoke(
                self._delegate_request(DelegateCommand.ADD, request, pod, network, config)
            )
            LOG.info("delegate ADD response for %s: %s", network.key(), response.result)

            new_status = network_status_from_result(
                network.namespaced_name, response.result, network.interface_request
            )
            pod = self._update_network_status(
                pod, lambda statuses: add_interface_status(statuses, new_status)
            )
            self._mark_completed(request, index + 1)
            self._event(
                pod,
                REASON_ADDED,
                f"pod [{namespaced_name(pod.namespace, pod.name)}]: added interface "
                f"{new_status.interface} to network: {network.name}",
            )

    def _remove_networks(self, request: RemoveNetworks, pod: Pod) -> None:
        completed = self._completed(request)
        for index, network in enumerate(request.networks):
            LOG.info("network to remove: %s", network.key())
            if index < completed:
                LOG.info("network %s removed by an earlier delivery, skipping", network.key())
                continue
            claimed = claimed_interfaces(pod.annotations, pod.namespace)
            attached = find_interface_status(
                parse_network_status(pod.annotations), network, claimed
            )
            if attached is None:
                LOG.info(
                    "network %s not attached to pod %s, skipping",
                    network.key(),
                    namespaced_name(pod.namespace, pod.name),
                )
                self._mark_completed(request, index + 1)
                continue

            config = self._definitions.get_config(network.namespace, network.name)
            response = self._delegate.invoke(
                self._delegate_request(
                    DelegateCommand.DEL, request, pod, network, config, attached.interface
                )
            )
            LOG.info("delegate DEL response for %s: %s", network.key(), response.result)

            pod = self._update_network_status(
                pod, lambda statuses: remove_interface_status(statuses, network, claimed)
            )
            self._mark_completed(request, index + 1)
            self._event(
                pod,
                REASON_REMOVED,
                f"pod [{namespaced_name(pod.namespace, pod.name)}]: removed interface "
                f"{attached.interface} from network: {network.name}",
            )

    def _completed(self, request: AttachmentRequest) -> int:
        with self._progress_lock:
            return self._progress.get(request, 0)

    def _mark_completed(self, request: AttachmentRequest, count: int) -> None:
        with self._progress_lock:
            self._progress[request] = count

    def _forget(self, request: AttachmentRequest) -> None:
        with self._progress_lock:
            self._progress.pop(request, None)
        self._queue.forget(request)

    @staticmethod
    def _delegate_request(
        command: DelegateCommand,
        request: AttachmentRequest,
        pod: Pod,
        network: NetworkSelectionElement,
        config: bytes,
        ifname: str = "",
    ) -> DelegateRequest:
        return DelegateRequest(
            command=command,
            container_id=pod.container_id(),
            netns=request.netns,
            ifname=ifname or network.interface_request,
            pod_namespace=pod.namespace,
            pod_name=pod.name,
            pod_uid=pod.uid,
            config=config,
            ip_request=network.ips,
            mac_request=network.mac,
        )

    # ------------------------------------------------------------------
    # Status persistence / events
    # ------------------------------------------------------------------
    def _update_network_status(self, pod: Pod, mutate: StatusMutation) -> Pod:
        """Apply ``mutate`` to the pod's status list and write it back.

        The write is conditional on the pod's resourceVersion.  On conflict
        the live pod is re-read and the mutation re-applied to its status,
        up to ``status_update_attempts`` times.
        """

        current = pod
        for attempt in range(1, self._status_update_attempts + 1):
            statuses = mutate(parse_network_status(current.annotations))
            try:
                return self._pods.update_annotations(
                    current, {NETWORK_STATUS_ANNOTATION: dump_network_status(statuses)}
                )
            except ConflictError as exc:
                LOG.warning(
                    "conflict updating the network-status of pod %s (attempt %d/%d): %s",
                    namespaced_name(current.namespace, current.name),
                    attempt,
                    self._status_update_attempts,
                    exc,
                )
                current = self._pods.read(current.namespace, current.name)

        raise StatusConflictError(
            f"failed to update pod's network-status annotations for "
            f"{namespaced_name(pod.namespace, pod.name)} after "
            f"{self._status_update_attempts} attempts"
        )

    def _event(self, pod: Pod, reason: str, message: str) -> None:
        if self._recorder is not None:
            self._recorder.event(pod, EVENT_TYPE_NORMAL, reason, message)


