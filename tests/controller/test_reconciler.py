"""Tests for the assignment reconciler."""

from typing import Any
from unittest.mock import patch

import pytest

from assignment_operator.config import OperatorConfig
from assignment_operator.controller import (
    Action,
    AssignmentTarget,
    Reconciler,
    determine_action,
)
from assignment_operator.exceptions import (
    NonFastForwardError,
    ReferenceNotFoundError,
    UserInputError,
)
from assignment_operator.manifest import (
    FINALIZER,
    Assignment,
    Environment,
    NamedResource,
    Workload,
)
from assignment_operator.store import InMemoryResourceStore

RID = NamedResource("WorkloadAssignment", "default", "myworkload")
CONFIG = OperatorConfig(
    gitops_repo_url="file:///gitops", requeue_interval=60, error_backoff=5
)


def _assignment_doc(namespace: str | None = "default", **spec: Any) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": "myworkload"}
    if namespace:
        metadata["namespace"] = namespace
    return {
        "apiVersion": "fleet.gitops.io/v1alpha1",
        "kind": "WorkloadAssignment",
        "metadata": metadata,
        "spec": {"workload": "myworkload", "cluster": "az-eastus2-1", **spec},
    }


WORKLOAD_DOC = {
    "apiVersion": "fleet.gitops.io/v1alpha1",
    "kind": "Workload",
    "metadata": {"name": "myworkload", "namespace": "default"},
    "spec": {
        "templates": {
            "workload": {"source": "file:///templates", "path": "deploy"},
        },
    },
}

ENVIRONMENT_DOC = {
    "apiVersion": "fleet.gitops.io/v1alpha1",
    "kind": "WorkloadEnvironment",
    "metadata": {"name": "production", "namespace": "default"},
    "spec": {"values": {"logLevel": "warn"}},
}


class FakeSynchronizer:
    """Records calls along with the finalizers present at the time of the call."""

    def __init__(self, store: InMemoryResourceStore) -> None:
        self.store = store
        self.calls: list[tuple[str, str, list[str]]] = []
        self.environments: list[Environment | None] = []
        self.error: Exception | None = None

    async def _finalizers(self, assignment: Assignment) -> list[str]:
        doc = await self.store.get_object(assignment.resource_id) or {}
        return list(doc.get("metadata", {}).get("finalizers") or ())

    async def create(
        self,
        workload: Workload,
        assignment: Assignment,
        environment: Environment | None = None,
    ) -> str:
        self.calls.append(("create", workload.name, await self._finalizers(assignment)))
        self.environments.append(environment)
        if self.error:
            raise self.error
        return "created-sha"

    async def delete(self, assignment: Assignment) -> str:
        self.calls.append(("delete", assignment.name, await self._finalizers(assignment)))
        if self.error:
            raise self.error
        return "deleted-sha"


@pytest.fixture(name="store")
def store_fixture() -> InMemoryResourceStore:
    """Create a test store holding the workload."""
    store = InMemoryResourceStore()
    store.add_object(WORKLOAD_DOC)
    return store


@pytest.fixture(name="synchronizer")
def synchronizer_fixture(store: InMemoryResourceStore) -> FakeSynchronizer:
    """Create a fake synchronizer."""
    return FakeSynchronizer(store)


@pytest.fixture(name="reconciler")
def reconciler_fixture(
    store: InMemoryResourceStore, synchronizer: FakeSynchronizer
) -> Reconciler:
    """Create the reconciler under test."""
    target = AssignmentTarget(store, synchronizer)  # type: ignore[arg-type]
    return Reconciler(target, CONFIG)


async def _finalizers(store: InMemoryResourceStore, rid: NamedResource) -> list[str]:
    doc = await store.get_object(rid)
    assert doc
    return list(doc["metadata"].get("finalizers") or ())


def test_determine_action() -> None:
    """Test classifying resource snapshots."""

    assignment = Assignment.parse_doc(_assignment_doc())
    assert determine_action(None) == Action.NOOP
    assert determine_action(assignment) == Action.CREATE

    assignment.finalizers = [FINALIZER]
    assert determine_action(assignment) == Action.CREATE

    assignment.deletion_timestamp = "2024-01-01T00:00:00Z"
    assert determine_action(assignment) == Action.DELETE


async def test_create(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test the finalizer is added before the assignment is materialized."""

    store.add_object(_assignment_doc())

    assert await reconciler.reconcile_resource(RID) == 60
    assert synchronizer.calls == [("create", "myworkload", [FINALIZER])]
    assert synchronizer.environments == [None]
    assert await _finalizers(store, RID) == [FINALIZER]


async def test_create_finalizer_present(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test an assignment that already carries the finalizer is not patched."""

    doc = _assignment_doc()
    doc["metadata"]["finalizers"] = [FINALIZER]
    store.add_object(doc)

    with patch.object(store, "patch_merge", wraps=store.patch_merge) as patch_merge:
        assert await reconciler.reconcile_resource(RID) == 60
    patch_merge.assert_not_called()
    assert synchronizer.calls == [("create", "myworkload", [FINALIZER])]


async def test_create_result(
    store: InMemoryResourceStore,
    reconciler: Reconciler,
) -> None:
    """Test the result of a successful create."""

    store.add_object(_assignment_doc())
    result = await reconciler.reconcile(Assignment.parse_doc(_assignment_doc()))
    assert result.action == Action.CREATE
    assert result.requeue_after == 60
    assert result.revision == "created-sha"


async def test_create_with_environment(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test the referenced environment is passed to the synchronizer."""

    store.add_object(ENVIRONMENT_DOC)
    store.add_object(_assignment_doc(environment="production"))

    assert await reconciler.reconcile_resource(RID) == 60
    assert len(synchronizer.environments) == 1
    environment = synchronizer.environments[0]
    assert environment
    assert environment.values == {"logLevel": "warn"}


async def test_missing_namespace(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test an assignment without a namespace is rejected before any change."""

    store.add_object(_assignment_doc(namespace=None))
    rid = NamedResource("WorkloadAssignment", None, "myworkload")
    assignment = Assignment.parse_doc(_assignment_doc(namespace=None))

    with pytest.raises(UserInputError, match="has no namespace"):
        await reconciler.reconcile(assignment)
    assert await reconciler.reconcile_resource(rid) == 5
    assert synchronizer.calls == []
    assert await _finalizers(store, rid) == []


async def test_missing_workload(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test an assignment referencing a missing workload is retried."""

    store.add_object(_assignment_doc(workload="missing"))

    with pytest.raises(ReferenceNotFoundError, match="Workload/default/missing"):
        await reconciler.reconcile(Assignment.parse_doc(_assignment_doc(workload="missing")))
    assert await reconciler.reconcile_resource(RID) == 5
    assert synchronizer.calls == []


async def test_missing_environment(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test an assignment referencing a missing environment is retried."""

    store.add_object(_assignment_doc(environment="missing"))
    assert await reconciler.reconcile_resource(RID) == 5
    assert synchronizer.calls == []


async def test_create_failure(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test a failed publish keeps the finalizer and backs off."""

    store.add_object(_assignment_doc())
    synchronizer.error = NonFastForwardError("remote has new commits")

    assert await reconciler.reconcile_resource(RID) == 5
    assert await _finalizers(store, RID) == [FINALIZER]

    synchronizer.error = None
    assert await reconciler.reconcile_resource(RID) == 60
    assert len(synchronizer.calls) == 2


async def test_delete(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test the artifacts are removed before the finalizer."""

    store.add_object(_assignment_doc())
    assert await reconciler.reconcile_resource(RID) == 60

    store.delete_object(RID)
    assert await reconciler.reconcile_resource(RID) is None
    assert synchronizer.calls[-1] == ("delete", "myworkload", [FINALIZER])
    assert await store.get_object(RID) is None


async def test_delete_failure(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test a failed removal keeps the finalizer so it is retried."""

    store.add_object(_assignment_doc())
    assert await reconciler.reconcile_resource(RID) == 60
    store.delete_object(RID)

    synchronizer.error = NonFastForwardError("remote has new commits")
    assert await reconciler.reconcile_resource(RID) == 5
    assert await _finalizers(store, RID) == [FINALIZER]

    synchronizer.error = None
    assert await reconciler.reconcile_resource(RID) is None
    assert await store.get_object(RID) is None


async def test_delete_result(
    store: InMemoryResourceStore,
    reconciler: Reconciler,
) -> None:
    """Test the result of a successful delete."""

    doc = _assignment_doc()
    doc["metadata"]["finalizers"] = [FINALIZER]
    doc["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    store.add_object(doc)

    result = await reconciler.reconcile(Assignment.parse_doc(doc))
    assert result.action == Action.DELETE
    assert result.requeue_after is None
    assert result.revision == "deleted-sha"


async def test_resource_gone(
    synchronizer: FakeSynchronizer, reconciler: Reconciler
) -> None:
    """Test a resource that no longer exists is not requeued."""

    assert await reconciler.reconcile_resource(RID) is None
    result = await reconciler.reconcile(None)
    assert result.action == Action.NOOP
    assert result.requeue_after is None
    assert synchronizer.calls == []


async def test_invalid_resource(
    store: InMemoryResourceStore, reconciler: Reconciler
) -> None:
    """Test a malformed resource is retried with backoff."""

    doc = _assignment_doc()
    del doc["spec"]["cluster"]
    store.add_object(doc)
    assert await reconciler.reconcile_resource(RID) == 5


async def test_unexpected_error(
    store: InMemoryResourceStore,
    synchronizer: FakeSynchronizer,
    reconciler: Reconciler,
) -> None:
    """Test an unexpected error is logged and retried with backoff."""

    store.add_object(_assignment_doc())
    synchronizer.error = RuntimeError("unexpected")
    assert await reconciler.reconcile_resource(RID) == 5


async def test_custom_intervals(
    store: InMemoryResourceStore, synchronizer: FakeSynchronizer
) -> None:
    """Test the requeue and backoff intervals come from the configuration."""

    config = CONFIG.update(requeue_interval=600.0, error_backoff=30.0)
    reconciler = Reconciler(AssignmentTarget(store, synchronizer), config)  # type: ignore[arg-type]
    store.add_object(_assignment_doc())
    assert await reconciler.reconcile_resource(RID) == 600

    synchronizer.error = NonFastForwardError("remote has new commits")
    assert await reconciler.reconcile_resource(RID) == 30
