"""Watcher implementations used by the dynamic networks controller."""

from .pods import PodInformer  # noqa: F401

__all__ = ["PodInformer"]
