"""Dynamic pod network attachments.

This package hosts the reconciliation core of the dynamic networks controller:
it keeps the interfaces attached to a running pod in sync with the pod's
``k8s.v1.cni.cncf.io/networks`` annotation.  The core is deliberately free of
Kubernetes, container runtime and Multus client code; those collaborators are
described by the abstract classes in :mod:`dynamic_networks.interfaces` and
implemented by the ``dynamic_networks_agent`` package.

The moving parts are:

* :mod:`~dynamic_networks.selection` parses the networks annotation and diffs
  two selection lists;
* :mod:`~dynamic_networks.queue` is the rate limited, retrying work queue;
* :mod:`~dynamic_networks.status` computes the network-status annotation; and
* :class:`~dynamic_networks.controller.PodNetworksController` reacts to pod
  updates and executes the resulting add/remove requests.
"""

from .controller import PodNetworksController  # noqa: F401
from .requests import AddNetworks, AttachmentRequest, RemoveNetworks  # noqa: F401

__all__ = [
    "AddNetworks",
    "AttachmentRequest",
    "PodNetworksController",
    "RemoveNetworks",
]
