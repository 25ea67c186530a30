"""
The store module provides access to the custom resources the operator
reconciles.

- Uses NamedResource as the key for all objects.
- Exchanges raw resource documents that callers parse with `manifest.py`.
- Applies JSON merge patches, which is how finalizers are added and removed.

This abstract interface allows for various implementations (in-memory for
tests and local runs, Kubernetes for a live cluster).
"""

from .store import ResourceStore, StoreEvent
from .in_memory import InMemoryResourceStore, merge_patch

__all__ = [
    "ResourceStore",
    "StoreEvent",
    "InMemoryResourceStore",
    "merge_patch",
]
