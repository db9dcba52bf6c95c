"""Abstract interfaces for the collaborators of the controller."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Mapping

from .types import DelegateRequest, DelegateResponse, Pod

PodUpdateHandler = Callable[[Pod, Pod], None]


class PodStore(ABC):
    """Cached, watchable access to pods."""

    @abstractmethod
    def get(self, namespace: str, name: str) -> Pod:
        """Return the cached pod or raise :class:`PodNotFoundError`."""

    @abstractmethod
    def read(self, namespace: str, name: str) -> Pod:
        """Return the live pod from the API server, bypassing the cache."""

    @abstractmethod
    def update_annotations(self, pod: Pod, annotations: Mapping[str, str]) -> Pod:
        """Set ``annotations`` on ``pod`` and return the updated pod.

        The write is conditional on ``pod.resource_version``; a stale version
        raises :class:`ConflictError`.
        """

    @abstractmethod
    def subscribe(self, handler: PodUpdateHandler) -> None:
        """Call ``handler(old, new)`` whenever a pod is modified."""


class AttachmentDefinitionStore(ABC):
    @abstractmethod
    def get_config(self, namespace: str, name: str) -> bytes:
        """Return the CNI configuration of a network-attachment-definition.

        Raises :class:`DefinitionNotFoundError` when it does not exist.
        """


class ContainerRuntime(ABC):
    @abstractmethod
    def netns_path(self, container_id: str) -> str:
        """Return the network namespace path of a running container."""


class DelegateClient(ABC):
    @abstractmethod
    def invoke(self, request: DelegateRequest) -> DelegateResponse:
        """Run a CNI ADD or DEL through the delegate API."""


class EventRecorder(ABC):
    @abstractmethod
    def event(self, pod: Pod, event_type: str, reason: str, message: str) -> None:
        """Attach an event to ``pod``."""
