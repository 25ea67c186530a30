"""Store module for reading and patching the watched resources."""

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from enum import Enum
from typing import Any, TYPE_CHECKING

from assignment_operator.manifest import NamedResource

__all__ = [
    "ResourceStore",
    "StoreEvent",
]


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_UPDATED = "object_updated"
    OBJECT_DELETED = "object_deleted"


class ResourceStore(ABC):
    """Abstract base class for the source of truth of resource definitions.

    Objects are exchanged as raw documents (nested dicts, as returned by the
    Kubernetes API) and parsed by the caller. Every method may raise
    `StoreError` when the backing service fails.
    """

    @abstractmethod
    async def get_object(self, resource_id: NamedResource) -> dict[str, Any] | None:
        """Return the current snapshot of a resource, or None if it does not exist."""

    @abstractmethod
    async def list_objects(
        self, kind: str, namespace: str | None = None
    ) -> list[dict[str, Any]]:
        """List the resources of a kind, optionally within a single namespace."""

    @abstractmethod
    async def patch_merge(
        self, resource_id: NamedResource, patch: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a JSON merge patch (RFC 7386) and return the updated snapshot.

        A `None` value in the patch removes the field.
        """

    @abstractmethod
    async def watch(
        self, kind: str, namespace: str | None = None
    ) -> AsyncGenerator[NamedResource, None]:
        """
        Watch for changes to resources of a specific kind.

        This is an asynchronous iterator that yields the identity of every
        resource that was added, modified or deleted. Only the identity is
        delivered: the consumer must read the current snapshot itself, which
        may no longer exist.

        Args:
            kind: The kind of resource to watch, e.g. "WorkloadAssignment".
            namespace: The namespace to watch, or all namespaces when None.

        Yields:
            The NamedResource of each changed resource.
        """
        if TYPE_CHECKING:
            yield None  # type: ignore[misc]
