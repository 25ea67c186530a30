"""Module for in memory resource store."""

import asyncio
import copy
from collections import defaultdict
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any, DefaultDict

import logging

from assignment_operator.exceptions import StoreError
from assignment_operator.manifest import NamedResource

from .store import ResourceStore, StoreEvent

_LOGGER = logging.getLogger(__name__)

Listener = Callable[[StoreEvent, NamedResource], None]


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch (RFC 7386) returning a new document.

    Mappings are merged recursively, a `None` value removes the key, and any
    other value (including lists) replaces the target value entirely.
    """
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def _has_finalizers(doc: dict[str, Any]) -> bool:
    return bool((doc.get("metadata") or {}).get("finalizers"))


def _is_deleting(doc: dict[str, Any]) -> bool:
    return bool((doc.get("metadata") or {}).get("deletionTimestamp"))


class InMemoryResourceStore(ResourceStore):
    """In-memory implementation of the ResourceStore interface.

    Deletion follows the Kubernetes semantics: deleting a resource that holds
    finalizers only marks it with a `deletionTimestamp`, and the resource is
    erased once a patch clears its finalizers.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryResourceStore."""
        self._objects: dict[NamedResource, dict[str, Any]] = {}
        self._listeners: DefaultDict[StoreEvent, list[Listener]] = defaultdict(list)

    def add_object(self, doc: dict[str, Any]) -> NamedResource:
        """Add or replace a resource document in the store."""
        resource_id = NamedResource.from_doc(doc)
        event = (
            StoreEvent.OBJECT_UPDATED
            if resource_id in self._objects
            else StoreEvent.OBJECT_ADDED
        )
        _LOGGER.debug("Adding object %s to store", resource_id)
        self._objects[resource_id] = copy.deepcopy(doc)
        self._fire_event(event, resource_id)
        return resource_id

    def delete_object(self, resource_id: NamedResource) -> None:
        """Request deletion of a resource.

        A resource holding finalizers is marked for deletion and kept until
        its finalizers are removed; otherwise it is erased immediately.
        """
        if (doc := self._objects.get(resource_id)) is None:
            raise StoreError(f"Object {resource_id} not found")
        if not _has_finalizers(doc):
            self._erase(resource_id)
            return
        if _is_deleting(doc):
            return
        _LOGGER.debug("Marking object %s for deletion", resource_id)
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        doc.setdefault("metadata", {})["deletionTimestamp"] = timestamp
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id)

    def _erase(self, resource_id: NamedResource) -> None:
        _LOGGER.debug("Removing object %s from store", resource_id)
        del self._objects[resource_id]
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id)

    async def get_object(self, resource_id: NamedResource) -> dict[str, Any] | None:
        """Return the current snapshot of a resource, or None if it does not exist."""
        if (doc := self._objects.get(resource_id)) is None:
            return None
        return copy.deepcopy(doc)

    async def list_objects(
        self, kind: str, namespace: str | None = None
    ) -> list[dict[str, Any]]:
        """List the resources of a kind ordered by identity."""
        return [
            copy.deepcopy(self._objects[resource_id])
            for resource_id in sorted(self._objects, key=str)
            if resource_id.kind == kind
            and (namespace is None or resource_id.namespace == namespace)
        ]

    async def patch_merge(
        self, resource_id: NamedResource, patch: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a JSON merge patch and return the updated snapshot."""
        if (doc := self._objects.get(resource_id)) is None:
            raise StoreError(f"Unable to patch {resource_id}: object not found")
        updated = merge_patch(doc, patch)
        if NamedResource.from_doc(updated) != resource_id:
            raise StoreError(f"Unable to patch {resource_id}: identity cannot change")
        _LOGGER.debug("Patching object %s with %s", resource_id, patch)
        self._objects[resource_id] = updated
        if _is_deleting(updated) and not _has_finalizers(updated):
            self._erase(resource_id)
        else:
            self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id)
        return copy.deepcopy(updated)

    def add_listener(self, event: StoreEvent, callback: Listener) -> Callable[[], None]:
        """Register a callback for a specific event.

        Returns a callable that can be called to remove the listener.
        """

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)
        return remove

    def _fire_event(self, event: StoreEvent, resource_id: NamedResource) -> None:
        for cb in list(self._listeners[event]):
            try:
                cb(event, resource_id)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)

    async def watch(
        self, kind: str, namespace: str | None = None
    ) -> AsyncGenerator[NamedResource, None]:
        """
        Watch for changes to resources of a specific kind.

        Only changes made after the watch starts are delivered, so callers
        should list the existing objects first.
        """
        queue: asyncio.Queue[NamedResource] = asyncio.Queue()

        def callback(event: StoreEvent, resource_id: NamedResource) -> None:
            if resource_id.kind != kind:
                return
            if namespace is not None and resource_id.namespace != namespace:
                return
            queue.put_nowait(resource_id)

        removers = [self.add_listener(event, callback) for event in StoreEvent]
        try:
            while True:
                resource_id = await queue.get()
                yield resource_id
                queue.task_done()
        except asyncio.CancelledError:
            _LOGGER.debug("watch for kind '%s' cancelled.", kind)
            raise
        finally:
            _LOGGER.debug("Cleaning up listeners for watch (kind: %s)", kind)
            for remove in removers:
                remove()
