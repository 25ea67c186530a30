"""Reconciliation engine for resources guarded by a finalizer.

Every reconciliation starts from the current snapshot of a resource and
classifies it into one `Action`:

- The resource no longer exists: nothing to do.
- Deletion has been requested: remove the materialized artifacts and only
  then release the resource by removing the finalizer.
- Otherwise: make sure the finalizer is present, then materialize the
  artifacts for the current definition.

The finalizer is always added before anything is materialized and removed
only after the artifacts are gone, so a resource can never disappear from the
store while artifacts it produced still exist.

The engine is generic over a `ReconcileTarget` which provides the resource
specific capabilities, e.g. `AssignmentTarget`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Generic, Protocol, TypeVar

from assignment_operator.config import OperatorConfig
from assignment_operator.exceptions import OperatorException, UserInputError
from assignment_operator.manifest import NamedResource

__all__ = [
    "Action",
    "ReconcileResult",
    "ReconcileTarget",
    "Reconciler",
    "determine_action",
]

_LOGGER = logging.getLogger(__name__)


class Reconcilable(Protocol):
    """The fields the engine reads from a reconciled resource."""

    @property
    def namespace(self) -> str | None: ...

    @property
    def deletion_requested(self) -> bool: ...

    @property
    def resource_id(self) -> NamedResource: ...


T = TypeVar("T", bound=Reconcilable)


class Action(str, Enum):
    """The action taken for one reconciliation."""

    CREATE = "create"
    DELETE = "delete"
    NOOP = "noop"


@dataclass(frozen=True)
class ReconcileResult:
    """The outcome of a reconciliation."""

    action: Action
    """The action that was taken."""

    requeue_after: float | None = None
    """Seconds until the resource should be reconciled again, or None."""

    revision: str | None = None
    """The repository revision the artifacts were published at."""


def determine_action(obj: Reconcilable | None) -> Action:
    """Classify a resource snapshot into the action to take."""
    if obj is None:
        return Action.NOOP
    if obj.deletion_requested:
        return Action.DELETE
    return Action.CREATE


class ReconcileTarget(ABC, Generic[T]):
    """Capabilities the engine needs for one kind of resource."""

    @abstractmethod
    async def get(self, resource_id: NamedResource) -> T | None:
        """Return the parsed current snapshot, or None if it does not exist."""

    @abstractmethod
    async def get_referenced_definition(self, obj: T) -> Any:
        """Return the definitions the resource references.

        Raises:
            ReferenceNotFoundError: A referenced resource does not exist.
        """

    @abstractmethod
    async def add_finalizer(self, obj: T) -> None:
        """Add the operator finalizer to the resource."""

    @abstractmethod
    async def remove_finalizer(self, obj: T) -> None:
        """Remove the operator finalizer from the resource."""

    @abstractmethod
    async def materialize(self, obj: T, definition: Any) -> str:
        """Publish the artifacts of the resource and return the revision."""

    @abstractmethod
    async def dematerialize(self, obj: T) -> str:
        """Remove the artifacts of the resource and return the revision."""


class Reconciler(Generic[T]):
    """Drives a ReconcileTarget from resource snapshots to artifacts."""

    def __init__(self, target: ReconcileTarget[T], config: OperatorConfig) -> None:
        """Initialize Reconciler."""
        self._target = target
        self._config = config

    async def reconcile(self, obj: T | None) -> ReconcileResult:
        """Reconcile one snapshot of a resource.

        Raises:
            UserInputError: The resource has no namespace.
            OperatorException: A finalizer patch or the materialization failed.
        """
        if obj is not None and not obj.namespace:
            raise UserInputError(f"Resource {obj.resource_id} has no namespace")
        action = determine_action(obj)
        if obj is None:
            return ReconcileResult(action)

        _LOGGER.debug("Reconciling %s with action %s", obj.resource_id, action.value)
        if action == Action.DELETE:
            revision = await self._target.dematerialize(obj)
            await self._target.remove_finalizer(obj)
            _LOGGER.info("Finalized %s at revision %s", obj.resource_id, revision)
            return ReconcileResult(action, revision=revision)

        await self._target.add_finalizer(obj)
        definition = await self._target.get_referenced_definition(obj)
        revision = await self._target.materialize(obj, definition)
        _LOGGER.info("Reconciled %s at revision %s", obj.resource_id, revision)
        return ReconcileResult(
            action, requeue_after=self._config.requeue_interval, revision=revision
        )

    async def reconcile_resource(self, resource_id: NamedResource) -> float | None:
        """Fetch and reconcile a resource, returning the requeue delay.

        Failures are logged and answered with the error backoff so that the
        resource is retried from a fresh snapshot.
        """
        try:
            obj = await self._target.get(resource_id)
            result = await self.reconcile(obj)
        except OperatorException as err:
            _LOGGER.error("Failed to reconcile %s: %s", resource_id, err)
            return self._config.error_backoff
        except Exception:
            _LOGGER.exception("Unexpected error reconciling %s", resource_id)
            return self._config.error_backoff
        return result.requeue_after
