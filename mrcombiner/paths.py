"""Centralized path computations for on-disk workspaces.

All workspaces live under a single root (``/gitlab-combiner`` by default,
``WORKSPACE_ROOT`` overrides it).  Each project gets exactly one directory,
keyed by its numeric id, which is reused across runs.
"""

from pathlib import Path

DEFAULT_WORKSPACE_ROOT = Path("/gitlab-combiner")


def workspace_dir(root: Path, project_id: int) -> Path:
    """Working copy for *project_id*: ``<root>/project-<id>``."""
    return root / f"project-{project_id}"


def git_dir(workspace: Path) -> Path:
    return workspace / ".git"
