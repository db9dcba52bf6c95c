"""Reconciliation requests exchanged through the retry queue."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .types import NetworkSelectionElement


@dataclass(frozen=True, eq=False)
class AttachmentRequest:
    """Networks to attach to or detach from one pod.

    Requests compare and hash by identity: the work queue coalesces a request
    object with itself, never with another request carrying the same data.
    The network list and ``netns`` reflect the diff at enqueue time and are
    replayed unchanged on every retry.
    """

    pod_namespace: str
    pod_name: str
    networks: Tuple[NetworkSelectionElement, ...]
    netns: str = ""

    def __str__(self) -> str:
        networks = ", ".join(n.key() for n in self.networks)
        return (
            f"{type(self).__name__}(pod={self.pod_namespace}/{self.pod_name}, "
            f"networks=[{networks}], netns={self.netns!r})"
        )


@dataclass(frozen=True, eq=False)
class AddNetworks(AttachmentRequest):
    """Attach every network in ``networks``, in order."""


@dataclass(frozen=True, eq=False)
class RemoveNetworks(AttachmentRequest):
    """Detach every network in ``networks``, in order."""
