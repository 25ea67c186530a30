"""Module for adding and removing the operator finalizer on a resource.

The finalizer keeps a resource in the store after deletion has been requested
until the operator has removed everything it materialized for it.
"""

import logging
from typing import Any

from assignment_operator.exceptions import StoreError
from assignment_operator.manifest import FINALIZER, NamedResource
from assignment_operator.store import ResourceStore

__all__ = [
    "FinalizerManager",
]

_LOGGER = logging.getLogger(__name__)


def _finalizers(doc: dict[str, Any]) -> list[str]:
    return list((doc.get("metadata") or {}).get("finalizers") or ())


class FinalizerManager:
    """Adds and removes the operator finalizer with merge patches."""

    def __init__(self, store: ResourceStore, finalizer: str = FINALIZER) -> None:
        """Initialize FinalizerManager."""
        self._store = store
        self._finalizer = finalizer

    async def _get(self, resource_id: NamedResource) -> dict[str, Any]:
        if (doc := await self._store.get_object(resource_id)) is None:
            raise StoreError(f"Object {resource_id} not found")
        return doc

    async def add_finalizer(self, resource_id: NamedResource) -> dict[str, Any]:
        """Add the finalizer, preserving any finalizers of other controllers.

        Returns the updated snapshot. No patch is sent when the finalizer is
        already present.
        """
        doc = await self._get(resource_id)
        finalizers = _finalizers(doc)
        if self._finalizer in finalizers:
            return doc
        _LOGGER.info("Adding finalizer %s to %s", self._finalizer, resource_id)
        return await self._store.patch_merge(
            resource_id,
            {"metadata": {"finalizers": [*finalizers, self._finalizer]}},
        )

    async def remove_finalizer(self, resource_id: NamedResource) -> dict[str, Any]:
        """Clear the finalizers of the resource.

        The whole finalizer list is cleared with a `null` merge patch, which
        releases the resource for deletion. No patch is sent when the
        finalizer is already absent.
        """
        doc = await self._get(resource_id)
        if self._finalizer not in _finalizers(doc):
            return doc
        _LOGGER.info("Removing finalizer %s from %s", self._finalizer, resource_id)
        return await self._store.patch_merge(
            resource_id, {"metadata": {"finalizers": None}}
        )
