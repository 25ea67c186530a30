"""End to end tests for the operator with a real GitOps repository."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import git
import pytest

from assignment_operator.config import OperatorConfig
from assignment_operator.controller import AssignmentTarget, Operator, Reconciler
from assignment_operator.gitops import GitOpsSynchronizer
from assignment_operator.manifest import FINALIZER, NamedResource
from assignment_operator.store import InMemoryResourceStore

RID = NamedResource("WorkloadAssignment", "default", "myworkload")
OUTPUT = "az-eastus2-1/myworkload/deployment.yaml"


@pytest.fixture(name="store")
def store_fixture(workload_doc: dict[str, Any]) -> InMemoryResourceStore:
    """Create a store holding the test workload."""
    store = InMemoryResourceStore()
    store.add_object(workload_doc)
    return store


@pytest.fixture(name="operator")
async def operator_fixture(
    store: InMemoryResourceStore, config: OperatorConfig
) -> AsyncGenerator[Operator, None]:
    """Run the operator in the background."""
    target = AssignmentTarget(store, GitOpsSynchronizer(config))
    operator = Operator(store, Reconciler(target, config), config)
    task = asyncio.create_task(operator.run())
    await asyncio.sleep(0)
    yield operator
    task.cancel()
    await operator.close()
    with pytest.raises(asyncio.CancelledError):
        await task


def _head_paths(remote: Path) -> list[str]:
    tree = git.Repo(remote).commit("main").tree
    return [item.path for item in tree.traverse() if item.type == "blob"]


async def _wait_for(condition: Any) -> None:
    async with asyncio.timeout(30):
        while not await condition():
            await asyncio.sleep(0.05)


async def test_assignment_lifecycle(
    operator: Operator,
    store: InMemoryResourceStore,
    assignment_doc: dict[str, Any],
    gitops_remote: Path,
) -> None:
    """Test an assignment is published when added and removed when deleted."""

    store.add_object(assignment_doc)

    async def reconciled() -> bool:
        return operator.queue.scheduled(RID) is not None

    await _wait_for(reconciled)

    doc = await store.get_object(RID)
    assert doc
    assert doc["metadata"]["finalizers"] == [FINALIZER]
    assert OUTPUT in _head_paths(gitops_remote)
    assert operator.queue.scheduled(RID) is not None

    store.delete_object(RID)

    async def deleted() -> bool:
        return await store.get_object(RID) is None

    await _wait_for(deleted)
    await operator.queue.block_till_done()
    assert OUTPUT not in _head_paths(gitops_remote)
    head = git.Repo(gitops_remote).commit("main")
    assert str(head.message).startswith("Reconciling deleted WorkloadAssignment")


async def test_existing_assignments_reconciled(
    store: InMemoryResourceStore,
    config: OperatorConfig,
    assignment_doc: dict[str, Any],
    gitops_remote: Path,
) -> None:
    """Test assignments present at startup are reconciled."""

    store.add_object(assignment_doc)
    target = AssignmentTarget(store, GitOpsSynchronizer(config))
    operator = Operator(store, Reconciler(target, config), config)
    task = asyncio.create_task(operator.run())
    try:
        await asyncio.sleep(0.01)
        await operator.queue.block_till_done()
        assert OUTPUT in _head_paths(gitops_remote)
    finally:
        task.cancel()
        await operator.close()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def test_other_namespace_ignored(
    store: InMemoryResourceStore,
    config: OperatorConfig,
    assignment_doc: dict[str, Any],
    gitops_remote: Path,
) -> None:
    """Test only the configured namespace is watched."""

    config = config.update(namespace="other")
    target = AssignmentTarget(store, GitOpsSynchronizer(config))
    operator = Operator(store, Reconciler(target, config), config)
    task = asyncio.create_task(operator.run())
    try:
        await asyncio.sleep(0)
        store.add_object(assignment_doc)
        await asyncio.sleep(0)
        assert not operator.queue.is_running(RID)
        await operator.queue.block_till_done()
        assert OUTPUT not in _head_paths(gitops_remote)
    finally:
        task.cancel()
        await operator.close()
        with contextlib.suppress(asyncio.CancelledError):
            await task
