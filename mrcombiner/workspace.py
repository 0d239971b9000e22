"""Workspace management — one long-lived git clone per project.

Workspaces live under ``<workspace_root>/project-<id>/`` and are reused
across runs.  Each run starts with ``ensure_synced``:

1. If a clone exists, fetch the default branch and hard-reset to it.
2. If that fails for any reason (corrupt clone, wrong remote, missing
   branch), the directory is treated as unusable: it is removed and
   cloned fresh.
3. If there is no clone yet, clone the default branch.

Only the clone path can fail the run; a broken workspace never does.

The integration branch is then recreated from the default branch by
``reset_integration_branch`` and, after candidates are folded in,
published with ``force_push``.  The integration branch is scratch state:
overwriting the remote copy is intended.

All functions here are synchronous and blocking; the orchestrator runs
them through ``asyncio.to_thread``.
"""

import logging
import shutil
from pathlib import Path

from mrcombiner.errors import GitCommandError, WorkspaceSyncError
from mrcombiner.git import DEFAULT_TIMEOUT, ref_exists, run_git
from mrcombiner.paths import git_dir, workspace_dir

logger = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"


# ---------------------------------------------------------------------------
# Sync / clone
# ---------------------------------------------------------------------------

def _clone(path: Path, clone_url: str, default_branch: str, timeout: float) -> None:
    """Fresh single-branch clone of *default_branch* into *path*."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()
    path.parent.mkdir(parents=True, exist_ok=True)
    run_git(
        ["clone", "--branch", default_branch, "--single-branch", clone_url, str(path)],
        timeout=timeout,
    )
    logger.info("Cloned %s (%s) into %s", clone_url, default_branch, path)


def _sync_existing(path: Path, clone_url: str, default_branch: str, timeout: float) -> None:
    """Fetch + hard reset an existing clone onto upstream *default_branch*.

    Raises ``WorkspaceSyncError`` on any failure.
    """
    if not git_dir(path).exists():
        raise WorkspaceSyncError(f"{path} is not a git working copy")

    try:
        # Point origin at the current clone URL (projects can be moved)
        run_git(["remote", "set-url", DEFAULT_REMOTE, clone_url], cwd=path, timeout=timeout)
        run_git(
            ["fetch", DEFAULT_REMOTE,
             f"+refs/heads/{default_branch}:refs/remotes/{DEFAULT_REMOTE}/{default_branch}"],
            cwd=path, timeout=timeout,
        )
        # Drop any half-finished merge from an interrupted run
        run_git(["merge", "--abort"], cwd=path, timeout=timeout, check=False)
        run_git(
            ["checkout", "--force", "-B", default_branch, f"{DEFAULT_REMOTE}/{default_branch}"],
            cwd=path, timeout=timeout,
        )
        run_git(["reset", "--hard", f"{DEFAULT_REMOTE}/{default_branch}"], cwd=path, timeout=timeout)
        run_git(["clean", "-fdx"], cwd=path, timeout=timeout)
    except GitCommandError as exc:
        raise WorkspaceSyncError(f"Could not sync {path}: {exc}") from exc


def ensure_synced(
    root: Path,
    project_id: int,
    clone_url: str,
    default_branch: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> Path:
    """Return the project's workspace, synced to upstream *default_branch*.

    Existing workspaces are fetched and hard-reset; if that fails they are
    replaced by a fresh clone.  Only a failed clone propagates.
    """
    path = workspace_dir(root, project_id)

    if path.exists():
        try:
            _sync_existing(path, clone_url, default_branch, timeout)
            logger.info("Synced workspace %s to %s/%s", path, DEFAULT_REMOTE, default_branch)
            return path
        except WorkspaceSyncError as exc:
            logger.warning("Workspace sync failed, recloning: %s", exc)

    _clone(path, clone_url, default_branch, timeout)
    return path


# ---------------------------------------------------------------------------
# Integration branch
# ---------------------------------------------------------------------------

def reset_integration_branch(
    workspace: Path,
    branch_name: str,
    base_branch: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> None:
    """Recreate *branch_name* as an exact copy of *base_branch*.

    A missing branch is fine; a branch that exists but cannot be deleted
    is logged and the subsequent create reports the real error.
    """
    run_git(["checkout", "--force", base_branch], cwd=workspace, timeout=timeout)

    if ref_exists(workspace, f"refs/heads/{branch_name}", timeout=timeout):
        try:
            run_git(["branch", "-D", branch_name], cwd=workspace, timeout=timeout)
            logger.info("Deleted existing branch %s", branch_name)
        except GitCommandError as exc:
            logger.warning("Could not delete branch %s: %s", branch_name, exc)

    run_git(["checkout", "-b", branch_name, base_branch], cwd=workspace, timeout=timeout)
    logger.info("Created branch %s from %s", branch_name, base_branch)


def force_push(
    workspace: Path,
    branch_name: str,
    remote_name: str = DEFAULT_REMOTE,
    timeout: float = DEFAULT_TIMEOUT,
) -> None:
    """Push *branch_name* to *remote_name*, overwriting its history."""
    run_git(
        ["push", "--force", remote_name, f"refs/heads/{branch_name}:refs/heads/{branch_name}"],
        cwd=workspace, timeout=timeout,
    )
    logger.info("Force pushed %s to %s", branch_name, remote_name)

