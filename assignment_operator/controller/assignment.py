"""Reconcile target for WorkloadAssignment resources."""

from dataclasses import dataclass
import logging

from assignment_operator.exceptions import ReferenceNotFoundError
from assignment_operator.gitops import GitOpsSynchronizer
from assignment_operator.manifest import (
    ENVIRONMENT_KIND,
    WORKLOAD_KIND,
    Assignment,
    Environment,
    NamedResource,
    Workload,
)
from assignment_operator.store import ResourceStore

from .finalizer import FinalizerManager
from .reconciler import ReconcileTarget

__all__ = [
    "AssignmentDefinition",
    "AssignmentTarget",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssignmentDefinition:
    """The resources an assignment references."""

    workload: Workload
    environment: Environment | None = None


class AssignmentTarget(ReconcileTarget[Assignment]):
    """Materializes assignments into the GitOps repository."""

    def __init__(
        self,
        store: ResourceStore,
        synchronizer: GitOpsSynchronizer,
        finalizers: FinalizerManager | None = None,
    ) -> None:
        """Initialize AssignmentTarget."""
        self._store = store
        self._synchronizer = synchronizer
        self._finalizers = finalizers or FinalizerManager(store)

    async def get(self, resource_id: NamedResource) -> Assignment | None:
        if (doc := await self._store.get_object(resource_id)) is None:
            return None
        return Assignment.parse_doc(doc)

    async def get_referenced_definition(
        self, obj: Assignment
    ) -> AssignmentDefinition:
        """Return the workload and the optional environment of the assignment.

        References are resolved within the namespace of the assignment.
        """
        workload_id = NamedResource(WORKLOAD_KIND, obj.namespace, obj.workload)
        if (doc := await self._store.get_object(workload_id)) is None:
            raise ReferenceNotFoundError(obj.namespaced_name, str(workload_id))
        workload = Workload.parse_doc(doc)

        environment = None
        if obj.environment:
            environment_id = NamedResource(ENVIRONMENT_KIND, obj.namespace, obj.environment)
            if (doc := await self._store.get_object(environment_id)) is None:
                raise ReferenceNotFoundError(obj.namespaced_name, str(environment_id))
            environment = Environment.parse_doc(doc)
        return AssignmentDefinition(workload=workload, environment=environment)

    async def add_finalizer(self, obj: Assignment) -> None:
        if obj.has_finalizer:
            return
        await self._finalizers.add_finalizer(obj.resource_id)

    async def remove_finalizer(self, obj: Assignment) -> None:
        await self._finalizers.remove_finalizer(obj.resource_id)

    async def materialize(self, obj: Assignment, definition: AssignmentDefinition) -> str:
        _LOGGER.debug(
            "Materializing %s for %s on cluster %s",
            obj.namespaced_name,
            definition.workload.namespaced_name,
            obj.cluster,
        )
        return await self._synchronizer.create(
            definition.workload, obj, definition.environment
        )

    async def dematerialize(self, obj: Assignment) -> str:
        _LOGGER.debug("Dematerializing %s from cluster %s", obj.namespaced_name, obj.cluster)
        return await self._synchronizer.delete(obj)
