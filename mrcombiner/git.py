"""Thin wrapper around the ``git`` executable.

All git invocations go through ``run_git`` so every command gets the
same bounded timeout and the same error mapping:

- non-zero exit          -> ``GitCommandError`` (only when ``check=True``)
- ``TimeoutExpired``     -> ``OperationTimeoutError`` (always)

Callers that want to branch on the exit code pass ``check=False`` and
inspect the returned ``CompletedProcess``.
"""

import logging
import os
import subprocess
from pathlib import Path

from mrcombiner.errors import GitCommandError, OperationTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0


def run_git(
    args: list[str],
    cwd: Path | str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run ``git <args>`` in *cwd* and return the completed process."""
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        result = subprocess.run(
            ["git"] + args,
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            # never block on a credential prompt
            env=_git_env(),
        )
    except subprocess.TimeoutExpired as exc:
        raise OperationTimeoutError(
            f"git {' '.join(args)} timed out after {timeout:g}s"
        ) from exc

    if check and result.returncode != 0:
        raise GitCommandError(args, result.returncode, result.stderr + result.stdout)
    return result


def _git_env() -> dict:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def ref_exists(repo: Path, ref: str, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """True if *ref* (fully qualified) resolves in *repo*."""
    result = run_git(["show-ref", "--verify", "--quiet", ref], cwd=repo, timeout=timeout, check=False)
    return result.returncode == 0


def rev_parse(repo: Path, rev: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    return run_git(["rev-parse", rev], cwd=repo, timeout=timeout).stdout.strip()


def unmerged_paths(repo: Path, timeout: float = DEFAULT_TIMEOUT) -> list[str]:
    """Paths left in a conflicted state by the last merge."""
    result = run_git(
        ["diff", "--name-only", "--diff-filter=U"], cwd=repo, timeout=timeout, check=False,
    )
    return [line for line in result.stdout.splitlines() if line.strip()]


def is_valid_branch_name(name: str) -> bool:
    """Check *name* with ``git check-ref-format --branch``."""
    if not name or name.startswith("-"):
        return False
    try:
        result = run_git(["check-ref-format", "--branch", name], timeout=10, check=False)
    except OperationTimeoutError:
        return False
    return result.returncode == 0
