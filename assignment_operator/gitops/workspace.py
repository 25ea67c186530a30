"""Helpers for ephemeral git working copies.

These functions wrap blocking GitPython calls and translate git failures into
`RepositoryError`. Callers run them in a worker thread.
"""

from collections.abc import Generator, Sequence
import contextlib
import logging
from pathlib import Path
import shutil
import tempfile

import git
from git.remote import PushInfo
from slugify import slugify

from assignment_operator.exceptions import (
    FilesystemError,
    NonFastForwardError,
    RepositoryError,
)

from .auth import GitCredentials

_LOGGER = logging.getLogger(__name__)

REMOTE_NAME = "origin"

# Markers git uses when the remote branch moved since the clone, either before
# the push or concurrently with it.
_NON_FAST_FORWARD_MARKERS = (
    "non-fast-forward",
    "fetch first",
    "[rejected]",
    "failed to update ref",
    "cannot lock ref",
)


@contextlib.contextmanager
def temporary_workdir(label: str) -> Generator[Path, None, None]:
    """Create a fresh directory that is removed on every exit path."""
    prefix = f"{slugify(label, max_length=50, lowercase=True, separator='-')}-"
    with tempfile.TemporaryDirectory(prefix=prefix, ignore_cleanup_errors=True) as tmp_dir:
        _LOGGER.debug("Created working directory %s", tmp_dir)
        yield Path(tmp_dir)


def clone(
    url: str, path: Path, credentials: GitCredentials, branch: str | None = None
) -> git.Repo:
    """Clone the repository into path, optionally at a branch or tag."""
    kwargs = {"branch": branch} if branch else {}
    _LOGGER.info("Cloning repository %s to %s", url, path)
    try:
        repo = git.Repo.clone_from(
            credentials.url(url), str(path), env=credentials.env(), **kwargs
        )
    except git.exc.GitCommandError as err:
        raise RepositoryError(
            credentials.redact(f"Unable to clone {url}: {err}")
        ) from err
    repo.git.update_environment(**credentials.env())
    return repo


def working_tree(repo: git.Repo) -> Path:
    """Return the root of the repository checkout."""
    if not repo.working_tree_dir:
        raise RepositoryError(f"Repository {repo.git_dir} has no working tree")
    return Path(repo.working_tree_dir)


def head_commit(repo: git.Repo) -> git.Commit:
    """Return the commit the current branch points to."""
    try:
        return repo.head.commit
    except ValueError as err:
        raise RepositoryError(
            f"Unable to resolve HEAD of {working_tree(repo)} to a commit: {err}"
        ) from err


def remove_path(repo: git.Repo, relative_path: Path) -> None:
    """Remove a tracked subtree from the index and the working tree.

    Untracked leftovers under the path are deleted too so the directory does
    not reappear in directory listings.
    """
    try:
        repo.git.rm("-r", "--ignore-unmatch", "--", str(relative_path))
    except git.exc.GitCommandError as err:
        raise RepositoryError(f"Unable to remove {relative_path}: {err}") from err
    leftover = working_tree(repo) / relative_path
    try:
        if leftover.is_dir():
            shutil.rmtree(leftover)
        elif leftover.exists():
            leftover.unlink()
    except OSError as err:
        raise FilesystemError(f"Unable to remove {leftover}: {err}") from err


def commit_paths(
    repo: git.Repo, paths: Sequence[Path], message: str, author: git.Actor
) -> str | None:
    """Stage the paths and commit on top of the current head.

    Returns the new commit SHA, or None when the staged tree is unchanged
    from the head commit.
    """
    parent = head_commit(repo)
    try:
        if paths:
            repo.git.add("--", *[str(path) for path in paths])
        index = repo.index
        if not index.diff(parent):
            _LOGGER.debug("No changes staged on top of %s", parent.hexsha)
            return None
        commit = index.commit(
            message,
            parent_commits=[parent],
            head=True,
            author=author,
            committer=author,
        )
    except (git.exc.GitCommandError, OSError) as err:
        raise RepositoryError(f"Unable to commit {message!r}: {err}") from err
    _LOGGER.info("Created commit %s: %s", commit.hexsha, message)
    return commit.hexsha


def _is_non_fast_forward(message: str) -> bool:
    return any(marker in message for marker in _NON_FAST_FORWARD_MARKERS)


def push(
    repo: git.Repo,
    branch: str,
    credentials: GitCredentials,
    timeout: float | None = None,
) -> None:
    """Push the local branch to the same branch on the remote.

    The git process is killed when it runs longer than `timeout` seconds.

    Raises:
        NonFastForwardError: The remote branch has moved since the clone.
        RepositoryError: Any other failure.
    """
    refspec = f"refs/heads/{branch}:refs/heads/{branch}"
    try:
        results = repo.remote(REMOTE_NAME).push(
            refspec=refspec, kill_after_timeout=timeout
        )
    except (git.exc.GitCommandError, ValueError) as err:
        message = credentials.redact(str(err))
        if _is_non_fast_forward(message):
            raise NonFastForwardError(
                f"Push of {branch} rejected, remote has new commits: {message}"
            ) from err
        raise RepositoryError(f"Unable to push {branch}: {message}") from err

    if not results:
        raise RepositoryError(f"Push of {branch} returned no result")
    for result in results:
        summary = credentials.redact(result.summary.strip())
        if result.flags & PushInfo.REJECTED or (
            result.flags & (PushInfo.ERROR | PushInfo.REMOTE_REJECTED)
            and _is_non_fast_forward(summary)
        ):
            raise NonFastForwardError(
                f"Push of {branch} rejected, remote has new commits: {summary}"
            )
        if result.flags & (
            PushInfo.ERROR | PushInfo.REMOTE_REJECTED | PushInfo.REMOTE_FAILURE
        ):
            raise RepositoryError(f"Push of {branch} failed: {summary}")
    _LOGGER.info("Pushed %s to %s", branch, REMOTE_NAME)
