"""Library for materializing assignments into a GitOps repository.

The synchronizer performs one complete transaction per call: clone the
template source and the destination repository into fresh temporary working
copies, rewrite the output directory of the assignment, regenerate the
aggregation manifest of the cluster, then commit and push. Nothing is cached
between calls and every working copy is deleted on exit, so a retry after a
failure (including a rejected non-fast-forward push) always starts over from
a fresh clone.

Example usage:

```python
from assignment_operator.config import OperatorConfig
from assignment_operator.gitops import GitOpsSynchronizer

synchronizer = GitOpsSynchronizer(
    OperatorConfig(gitops_repo_url="git@github.com:example/gitops.git")
)
sha = await synchronizer.create(workload, assignment)
```
"""

import asyncio
import logging
from pathlib import Path

import git

from assignment_operator.config import OperatorConfig
from assignment_operator.context import trace_context
from assignment_operator.exceptions import UserInputError
from assignment_operator.linker import link
from assignment_operator.manifest import (
    ASSIGNMENT_KIND,
    TEMPLATE_METHOD_FILE,
    WORKLOAD_KIND,
    Assignment,
    Environment,
    TemplateSource,
    Workload,
)
from assignment_operator.render import render
from assignment_operator.values import assignment_values

from . import workspace
from .auth import GitCredentials

__all__ = [
    "GitOpsSynchronizer",
]

_LOGGER = logging.getLogger(__name__)

FILE_URL_PREFIX = "file://"
TEMPLATE_DIR = "template"
GITOPS_DIR = "gitops"


def _path_component(value: str, description: str) -> str:
    """Validate that a name is usable as a single directory name."""
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise UserInputError(f"Invalid {description} '{value}' for an output path")
    return value


def output_path(assignment: Assignment) -> Path:
    """Return the path of the assignment within the GitOps repository."""
    return Path(
        _path_component(assignment.cluster, "cluster name"),
        _path_component(assignment.name, "assignment name"),
    )


def commit_message(verb: str, assignment: Assignment) -> str:
    """Return the commit message for a create or delete of an assignment."""
    return (
        f"Reconciling {verb} {ASSIGNMENT_KIND} {assignment.name} for "
        f"{WORKLOAD_KIND} {assignment.workload} for Cluster {assignment.cluster}"
    )


def _template_root(checkout: Path, source: TemplateSource) -> Path:
    """Return the template tree within a checkout, rejecting escapes."""
    root = checkout.resolve()
    template_dir = (root / source.path).resolve()
    if not template_dir.is_relative_to(root):
        raise UserInputError(
            f"Template path '{source.path}' is outside of source {source.source}"
        )
    if not template_dir.is_dir():
        raise UserInputError(
            f"Template path '{source.path}' does not exist in source {source.source}"
        )
    return template_dir


class GitOpsSynchronizer:
    """Writes the rendered output of assignments to a GitOps repository."""

    def __init__(
        self, config: OperatorConfig, credentials: GitCredentials | None = None
    ) -> None:
        """Initialize GitOpsSynchronizer."""
        if not config.gitops_repo_url:
            raise UserInputError("A GitOps repository URL is required")
        self._config = config
        self._credentials = credentials or GitCredentials(
            ssh_key_path=config.ssh_key_path, token=config.token
        )
        self._author = git.Actor(config.commit_author_name, config.commit_author_email)

    async def create(
        self,
        workload: Workload,
        assignment: Assignment,
        environment: Environment | None = None,
    ) -> str:
        """Render the workload for the assignment and publish it.

        Returns the SHA of the branch head after the push, which is the
        existing head when the rendered output was already up to date.
        """
        relative_path = output_path(assignment)
        variables = assignment_values(
            workload,
            assignment,
            environment,
            platform_values=self._config.platform_values,
        )
        label = f"create-{assignment.namespaced_name}"
        async with trace_context(label):
            with workspace.temporary_workdir(label) as workdir:
                template_dir = await self._fetch_template(workload.template, workdir)
                repo = await self._clone_gitops(workdir)
                root = workspace.working_tree(repo)
                await asyncio.to_thread(workspace.remove_path, repo, relative_path)
                paths = await render(template_dir, root, relative_path, variables)
                manifest = await link(
                    root / relative_path.parent,
                    reserved=self._config.reserved_dirs,
                    base_resources=self._config.base_resources,
                )
                paths.append(manifest.relative_to(root))
                return await self._commit_and_push(
                    repo, paths, commit_message("created", assignment)
                )

    async def delete(self, assignment: Assignment) -> str:
        """Remove the output of the assignment and publish the removal.

        Deleting an assignment that was never materialized succeeds without
        a commit.
        """
        relative_path = output_path(assignment)
        label = f"delete-{assignment.namespaced_name}"
        async with trace_context(label):
            with workspace.temporary_workdir(label) as workdir:
                repo = await self._clone_gitops(workdir)
                root = workspace.working_tree(repo)
                await asyncio.to_thread(workspace.remove_path, repo, relative_path)
                paths: list[Path] = []
                cluster_dir = root / relative_path.parent
                if cluster_dir.is_dir():
                    manifest = await link(
                        cluster_dir,
                        reserved=self._config.reserved_dirs,
                        base_resources=self._config.base_resources,
                    )
                    paths.append(manifest.relative_to(root))
                return await self._commit_and_push(
                    repo, paths, commit_message("deleted", assignment)
                )

    def _local_template_source(self, source: TemplateSource) -> Path:
        """Return the local directory of a `file` source within the allowed root."""
        if self._config.file_template_root is None:
            raise UserInputError(
                f"Local template source {source.source} is not allowed, "
                "no file template root is configured"
            )
        allowed = self._config.file_template_root.resolve()
        local = Path(source.source.removeprefix(FILE_URL_PREFIX)).resolve()
        if not local.is_relative_to(allowed):
            raise UserInputError(
                f"Local template source {source.source} is outside of {allowed}"
            )
        return local

    async def _fetch_template(self, source: TemplateSource, workdir: Path) -> Path:
        """Return a local directory holding the template tree of the source."""
        if source.fetch_method == TEMPLATE_METHOD_FILE:
            return _template_root(self._local_template_source(source), source)
        async with trace_context("clone-template", timeout=self._config.step_timeout):
            await asyncio.to_thread(
                workspace.clone,
                source.source,
                workdir / TEMPLATE_DIR,
                self._credentials,
                source.ref,
            )
        return _template_root(workdir / TEMPLATE_DIR, source)

    async def _clone_gitops(self, workdir: Path) -> git.Repo:
        async with trace_context("clone-gitops", timeout=self._config.step_timeout):
            return await asyncio.to_thread(
                workspace.clone,
                self._config.gitops_repo_url,
                workdir / GITOPS_DIR,
                self._credentials,
                self._config.branch,
            )

    async def _commit_and_push(
        self, repo: git.Repo, paths: list[Path], message: str
    ) -> str:
        async with trace_context("commit", timeout=self._config.step_timeout):
            sha = await asyncio.to_thread(
                workspace.commit_paths, repo, paths, message, self._author
            )
        if sha is None:
            head = workspace.head_commit(repo).hexsha
            _LOGGER.info("Repository already up to date at %s: %s", head, message)
            return head
        async with trace_context("push", timeout=self._config.step_timeout):
            await asyncio.to_thread(
                workspace.push,
                repo,
                self._config.branch,
                self._credentials,
                self._config.step_timeout,
            )
        return sha
