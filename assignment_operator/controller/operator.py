"""The operator wires the resource store, the queue and the reconciler."""

import logging

from assignment_operator.config import OperatorConfig
from assignment_operator.manifest import ASSIGNMENT_KIND, NamedResource
from assignment_operator.store import ResourceStore

from .queue import ReconcileQueue
from .reconciler import Reconciler

__all__ = [
    "Operator",
]

_LOGGER = logging.getLogger(__name__)


class Operator:
    """Reconciles every resource of a kind as it changes in the store."""

    def __init__(
        self,
        store: ResourceStore,
        reconciler: Reconciler,
        config: OperatorConfig,
        kind: str = ASSIGNMENT_KIND,
    ) -> None:
        """Initialize Operator."""
        self._store = store
        self._config = config
        self._kind = kind
        self._queue = ReconcileQueue(reconciler.reconcile_resource)

    @property
    def queue(self) -> ReconcileQueue:
        """The queue of pending reconciliations."""
        return self._queue

    async def run(self) -> None:
        """Reconcile the existing resources then follow changes until cancelled."""
        namespace = self._config.namespace
        docs = await self._store.list_objects(self._kind, namespace)
        _LOGGER.info(
            "Starting reconciliation of %d %s resources in %s",
            len(docs),
            self._kind,
            namespace or "all namespaces",
        )
        for doc in docs:
            self._queue.add(NamedResource.from_doc(doc))
        async for resource_id in self._store.watch(self._kind, namespace):
            _LOGGER.debug("Change to %s", resource_id)
            self._queue.add(resource_id)

    async def close(self) -> None:
        """Stop all pending and running reconciliations."""
        await self._queue.close()
