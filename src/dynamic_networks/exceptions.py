"""Exceptions raised by the pod networks controller."""

from __future__ import annotations


class DynamicNetworksError(Exception):
    """Base class for every error raised by this package."""


class AnnotationError(DynamicNetworksError):
    """A networks or network-status annotation is missing or malformed."""


class PodNotFoundError(DynamicNetworksError):
    def __init__(self, namespace: str, name: str) -> None:
        super().__init__(f"pod {namespace}/{name} not found")
        self.namespace = namespace
        self.name = name


class DefinitionNotFoundError(DynamicNetworksError):
    def __init__(self, namespace: str, name: str) -> None:
        super().__init__(
            f"network-attachment-definition {namespace}/{name} not found"
        )
        self.namespace = namespace
        self.name = name


class DelegateError(DynamicNetworksError):
    """The Multus delegate API refused or failed a request."""


class RuntimeClientError(DynamicNetworksError):
    """The container runtime could not resolve a network namespace."""


class ConflictError(DynamicNetworksError):
    """The pod changed since it was read (stale resourceVersion)."""


class StatusConflictError(DynamicNetworksError):
    """The network-status annotation could not be written after retrying."""
