"""Fold candidate merge requests into the integration branch.

For each candidate, in list order:

1. Fetch ``refs/merge-requests/<iid>/head`` into the local scratch ref
   ``refs/combiner/mr-<iid>`` (force-updated, so repeated runs never collide).
2. Check out the integration branch.
3. ``git merge --no-ff --no-edit refs/combiner/mr-<iid>``.

Folding is sequential and best-effort: a candidate that conflicts, or
whose fetch/checkout fails, is reported via its ``FoldResult`` and the
integration branch is left exactly where it was before that candidate.
The caller moves on to the next one.  Only timeouts escape as exceptions.

The integration branch is a single mutable resource, so candidates are
never merged concurrently.

Scratch refs for merge requests that are no longer candidates are removed
by ``prune_scratch_refs``.
"""

import enum
import logging
from pathlib import Path

from mrcombiner.config import GitIdentity
from mrcombiner.errors import GitCommandError, MergeConflictError
from mrcombiner.git import DEFAULT_TIMEOUT, run_git, unmerged_paths
from mrcombiner.models import SCRATCH_NAMESPACE, CandidateMergeRequest
from mrcombiner.workspace import DEFAULT_REMOTE

logger = logging.getLogger(__name__)


class FoldStatus(enum.Enum):
    """Outcome of folding one candidate.

    Each member carries a human-readable ``short_message`` and whether the
    candidate's changes ended up on the integration branch.
    """

    CLEAN           = ("Merged", True)
    CONFLICT        = ("Merge conflict", False)
    PROCESS_FAILURE = ("Git command failed", False)

    def __init__(self, short_message: str, merged: bool):
        self.short_message = short_message
        self.merged = merged


class FoldResult:
    """Result of folding one candidate into the integration branch."""

    def __init__(self, iid: int, status: FoldStatus, detail: str = ""):
        self.iid = iid
        self.status = status
        self.detail = detail

    @property
    def merged(self) -> bool:
        return self.status.merged

    def describe(self) -> str:
        if self.status is FoldStatus.CLEAN:
            return f"Merged MR !{self.iid}"
        return f"Skipped MR !{self.iid}: {self.status.short_message}: {self.detail}"

    def __repr__(self) -> str:
        return f"FoldResult(!{self.iid}, {self.status.name}, {self.detail!r})"


def _merge_scratch_ref(
    workspace: Path,
    candidate: CandidateMergeRequest,
    identity: GitIdentity,
    timeout: float,
) -> None:
    """Merge the candidate's scratch ref into HEAD.

    Raises ``MergeConflictError`` (after aborting the merge) when the
    index is left with unmerged paths, ``GitCommandError`` otherwise.
    """
    scratch = candidate.scratch_ref
    result = run_git(
        identity.config_args()
        + ["merge", "--no-ff", "--no-edit", "-m", f"Merge MR !{candidate.iid}", scratch],
        cwd=workspace, timeout=timeout, check=False,
    )
    if result.returncode == 0:
        return

    paths = unmerged_paths(workspace, timeout=timeout)
    run_git(["merge", "--abort"], cwd=workspace, timeout=timeout, check=False)
    if paths:
        raise MergeConflictError(scratch, paths)
    raise GitCommandError(["merge", scratch], result.returncode, result.stderr + result.stdout)


def fold_in(
    workspace: Path,
    integration_branch: str,
    candidate: CandidateMergeRequest,
    identity: GitIdentity,
    remote_name: str = DEFAULT_REMOTE,
    timeout: float = DEFAULT_TIMEOUT,
) -> FoldResult:
    """Fetch *candidate* and merge it into *integration_branch*."""
    iid = candidate.iid
    try:
        run_git(
            ["fetch", remote_name, f"+{candidate.source_ref}:{candidate.scratch_ref}"],
            cwd=workspace, timeout=timeout,
        )
        run_git(["checkout", integration_branch], cwd=workspace, timeout=timeout)
        _merge_scratch_ref(workspace, candidate, identity, timeout)
    except MergeConflictError as exc:
        logger.warning("MR !%d conflicts with %s: %s", iid, integration_branch, ", ".join(exc.paths))
        return FoldResult(iid, FoldStatus.CONFLICT, f"conflicting files: {', '.join(exc.paths)}")
    except GitCommandError as exc:
        logger.warning("MR !%d could not be folded into %s: %s", iid, integration_branch, exc)
        return FoldResult(iid, FoldStatus.PROCESS_FAILURE, exc.output[:300] or str(exc))

    logger.info("Merged MR !%d into %s", iid, integration_branch)
    return FoldResult(iid, FoldStatus.CLEAN)



def prune_scratch_refs(
    workspace: Path,
    keep: list[CandidateMergeRequest],
    timeout: float = DEFAULT_TIMEOUT,
) -> list[str]:
    """Delete scratch refs of merge requests not in *keep*; return them."""
    wanted = {c.scratch_ref for c in keep}
    listing = run_git(
        ["for-each-ref", "--format=%(refname)", SCRATCH_NAMESPACE],
        cwd=workspace, timeout=timeout,
    )
    stale = [ref for ref in listing.stdout.split() if ref not in wanted]
    for ref in stale:
        run_git(["update-ref", "-d", ref], cwd=workspace, timeout=timeout)
    if stale:
        logger.info("Pruned %d stale scratch ref(s) in %s", len(stale), workspace)
    return stale
