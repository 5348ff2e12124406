"""Git operations used by the reconciler and validator."""

import contextlib
import logging
import tempfile
from collections.abc import Generator
from pathlib import Path

import git

from .exceptions import ConfigurationError, PartnerChartsException, UpstreamError

logger = logging.getLogger(__name__)


def open_repo(path: Path) -> git.Repo:
    """Open the git repository at path.

    Raises:
        ConfigurationError: If path is not inside a git repository
    """
    try:
        return git.Repo(str(path))
    except git.GitError as err:
        raise ConfigurationError(f"Unable to open git repository {path}: {err}") from err


def clone_repo(url: str, branch: str, target_dir: Path, shallow: bool = True) -> git.Repo:
    """Clone a single branch of url into target_dir.

    Args:
        url: Repository URL
        branch: Branch to clone; the remote's default branch if empty
        target_dir: Directory to clone into
        shallow: Fetch only the branch tip

    Raises:
        UpstreamError: If the clone fails
    """
    options: dict = {}
    if branch:
        options["branch"] = branch
        options["single_branch"] = True
    if shallow:
        options["depth"] = 1

    logger.debug(f"Cloning {url} ({branch or 'default branch'}) into {target_dir}")
    try:
        return git.Repo.clone_from(url, str(target_dir), **options)
    except git.GitCommandError as err:
        raise UpstreamError(f"failed to clone {url}: {err}") from err


@contextlib.contextmanager
def cloned_repo(url: str, branch: str = "", shallow: bool = True) -> Generator[Path, None, None]:
    """Clone url into a temporary directory that is removed on exit."""
    with tempfile.TemporaryDirectory(prefix="partner-charts-git-") as tmp_dir:
        clone_repo(url, branch, Path(tmp_dir), shallow=shallow)
        yield Path(tmp_dir)


def checkout_commit(repo_path: Path, commit: str) -> None:
    """Check out a specific commit, detaching HEAD.

    Raises:
        UpstreamError: If the commit cannot be checked out
    """
    try:
        git.Repo(str(repo_path)).git.checkout(commit)
    except git.GitCommandError as err:
        raise UpstreamError(f"failed to check out {commit}: {err}") from err


def head_commit(repo_path: Path) -> str:
    """Return the commit hash HEAD points to."""
    return git.Repo(str(repo_path)).head.commit.hexsha


def clean_worktree(repo_root: Path) -> None:
    """Discard all uncommitted changes and remove untracked files."""
    repo = open_repo(repo_root)
    logger.info(f"Discarding uncommitted changes in {repo_root}")
    repo.git.clean("-f", "-d")
    repo.head.reset(index=True, working_tree=True)


def commit_changes(repo_root: Path, paths: list[str], message: str) -> str:
    """Stage paths, including deletions under them, and commit.

    Args:
        repo_root: Repository root
        paths: Paths relative to repo_root to stage
        message: Commit message

    Returns:
        Hash of the new commit

    Raises:
        PartnerChartsException: If the working tree is not clean afterwards
    """
    repo = open_repo(repo_root)
    for path in paths:
        if (repo_root / path).exists() or _is_tracked(repo, path):
            repo.git.add("--all", "--", path)

    logger.info("Committing changes")
    repo.git.commit("-m", message)

    if repo.is_dirty(untracked_files=True):
        raise PartnerChartsException("Git status is not clean")
    return repo.head.commit.hexsha


def _is_tracked(repo: git.Repo, path: str) -> bool:
    return bool(repo.git.ls_files("--", path))
