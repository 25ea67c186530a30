"""Work queue that serializes reconciliations per resource.

Reconciliations of different resources run concurrently as asyncio tasks,
while a single resource is never reconciled twice at the same time: adding a
resource that is currently running marks it dirty, and it runs once more when
the current reconciliation completes. Delayed requeues are coalesced so that
only the earliest pending one remains.
"""

import asyncio
from collections.abc import Awaitable, Callable
import logging

from assignment_operator.manifest import NamedResource

__all__ = [
    "ReconcileQueue",
]

_LOGGER = logging.getLogger(__name__)

Handler = Callable[[NamedResource], Awaitable[float | None]]


class ReconcileQueue:
    """Schedules reconciliations of resources by identity.

    The handler is called with the identity of a resource and returns the
    number of seconds after which the resource should be reconciled again,
    or None.
    """

    def __init__(self, handler: Handler) -> None:
        """Initialize the queue."""
        self._handler = handler
        self._running: dict[NamedResource, asyncio.Task[None]] = {}
        self._dirty: set[NamedResource] = set()
        self._timers: dict[NamedResource, tuple[float, asyncio.TimerHandle]] = {}
        self._closed = False

    def add(self, resource_id: NamedResource, delay: float = 0.0) -> None:
        """Reconcile the resource now, or after a delay in seconds."""
        if self._closed:
            _LOGGER.debug("Queue closed, dropping %s", resource_id)
            return
        if delay > 0:
            self._schedule(resource_id, delay)
            return
        self._cancel_timer(resource_id)
        if resource_id in self._running:
            _LOGGER.debug("Reconciliation of %s in progress, marking dirty", resource_id)
            self._dirty.add(resource_id)
            return
        task = asyncio.create_task(self._run(resource_id), name=f"reconcile {resource_id}")
        self._running[resource_id] = task
        task.add_done_callback(self._task_done)

    def scheduled(self, resource_id: NamedResource) -> float | None:
        """Return the loop time of the pending requeue of the resource, if any."""
        if (timer := self._timers.get(resource_id)) is None:
            return None
        return timer[0]

    def is_running(self, resource_id: NamedResource) -> bool:
        """Return True if the resource is being reconciled."""
        return resource_id in self._running

    def _schedule(self, resource_id: NamedResource, delay: float) -> None:
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        if (existing := self._timers.get(resource_id)) is not None:
            if existing[0] <= when:
                return
            existing[1].cancel()
        _LOGGER.debug("Requeue %s in %0.1fs", resource_id, delay)
        self._timers[resource_id] = (when, loop.call_at(when, self._fire, resource_id))

    def _fire(self, resource_id: NamedResource) -> None:
        self._timers.pop(resource_id, None)
        self.add(resource_id)

    def _cancel_timer(self, resource_id: NamedResource) -> None:
        if (timer := self._timers.pop(resource_id, None)) is not None:
            timer[1].cancel()

    async def _run(self, resource_id: NamedResource) -> None:
        requeue_after: float | None = None
        try:
            while True:
                self._dirty.discard(resource_id)
                requeue_after = await self._handler(resource_id)
                if resource_id not in self._dirty:
                    break
        finally:
            self._running.pop(resource_id, None)
            self._dirty.discard(resource_id)
        if requeue_after is not None:
            self.add(resource_id, requeue_after)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            _LOGGER.error("Task %s failed: %s", task.get_name(), e)

    async def block_till_done(self) -> None:
        """Wait until no reconciliation is running.

        Pending delayed requeues are not waited for.
        """
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending requeues and running reconciliations."""
        self._closed = True
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
