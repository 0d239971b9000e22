"""Combination orchestrator — one run per triggering comment.

The run is a linear sequence of stages::

    FETCHING_PROJECT_INFO -> SYNCING_WORKSPACE -> RESETTING_INTEGRATION_BRANCH
      -> LISTING_CANDIDATES -> FOLDING_CANDIDATES (x N) -> PUSHING_RESULT
      -> REPORTING_OUTCOME

Any ``CombinerError`` (or unexpected exception) short-circuits straight to
``REPORTING_OUTCOME`` with a ``Failure``.  Reporting always runs exactly
once and always posts a comment on the triggering merge request; it is
the only completion signal the requester gets.

Blocking git work is pushed onto worker threads with
``asyncio.to_thread`` so many runs (for different projects) can proceed
concurrently on one event loop.  Runs for the *same* project are kept
apart by ``CombineWorker``, not here.
"""

import asyncio
import enum
import logging
from pathlib import Path
from typing import Protocol

from mrcombiner.builder import FoldResult, fold_in, prune_scratch_refs
from mrcombiner.config import Settings
from mrcombiner.errors import CombinerError, GitCommandError
from mrcombiner.models import CandidateMergeRequest, CombineJob, Project
from mrcombiner.report import Failure, RunLog, RunOutcome, Success
from mrcombiner.workspace import DEFAULT_REMOTE, ensure_synced, force_push, reset_integration_branch

logger = logging.getLogger(__name__)


class CombineStage(enum.Enum):
    IDLE                         = "idle"
    FETCHING_PROJECT_INFO        = "fetching project info"
    SYNCING_WORKSPACE            = "syncing workspace"
    RESETTING_INTEGRATION_BRANCH = "resetting integration branch"
    LISTING_CANDIDATES           = "listing merge requests"
    FOLDING_CANDIDATES           = "merging merge requests"
    PUSHING_RESULT               = "pushing integration branch"
    REPORTING_OUTCOME            = "reporting outcome"


class HostingGateway(Protocol):
    async def get_project(self, project_id: int) -> Project: ...

    async def list_open_merge_requests(
        self, project_id: int, label: str,
    ) -> list[CandidateMergeRequest]: ...

    async def post_comment(self, project_id: int, merge_request_iid: int, body: str) -> None: ...


async def _fold_candidates(
    job: CombineJob,
    settings: Settings,
    workspace: Path,
    candidates: list[CandidateMergeRequest],
    log: RunLog,
) -> list[FoldResult]:
    """Merge candidates one at a time, in list order."""
    results: list[FoldResult] = []
    for candidate in candidates:
        result = await asyncio.to_thread(
            fold_in,
            workspace,
            job.target_branch,
            candidate,
            settings.git_identity,
            remote_name=DEFAULT_REMOTE,
            timeout=settings.git_timeout,
        )
        log.add(result.describe(), level=logging.INFO if result.merged else logging.WARNING)
        results.append(result)
    return results


async def _report(job: CombineJob, gateway: HostingGateway, outcome: RunOutcome) -> None:
    try:
        await gateway.post_comment(job.project_id, job.merge_request_iid, outcome.comment_body())
    except Exception:
        # Nowhere left to report to
        logger.exception(
            "Failed to post result comment | project=%d | mr=!%d",
            job.project_id, job.merge_request_iid,
        )


async def combine_merge_requests(
    job: CombineJob,
    settings: Settings,
    gateway: HostingGateway,
) -> RunOutcome:
    """Run the whole combination workflow for *job* and report the outcome."""
    log = RunLog(logger)
    target = job.target_branch
    stage = CombineStage.FETCHING_PROJECT_INFO
    logger.info("Processing MRs | project=%d | trigger=!%d", job.project_id, job.merge_request_iid)

    try:
        project = await gateway.get_project(job.project_id)
        log.add(f"Fetched repo info: branch = {project.default_branch}, url = {project.clone_url}")
        if target == project.default_branch:
            raise CombinerError("Target branch is the same as the default branch")

        stage = CombineStage.SYNCING_WORKSPACE
        workspace = await asyncio.to_thread(
            ensure_synced,
            settings.workspace_root,
            project.id,
            project.clone_url,
            project.default_branch,
            settings.git_timeout,
        )
        log.add(f"Synced {project.default_branch} into {workspace}")

        stage = CombineStage.RESETTING_INTEGRATION_BRANCH
        await asyncio.to_thread(
            reset_integration_branch, workspace, target, project.default_branch, settings.git_timeout,
        )
        log.add(f"Created branch {target} from {project.default_branch}")

        stage = CombineStage.LISTING_CANDIDATES
        candidates = await gateway.list_open_merge_requests(project.id, job.label)
        log.add(f"Found {len(candidates)} merge requests labelled {job.label}")

        stage = CombineStage.FOLDING_CANDIDATES
        results = await _fold_candidates(job, settings, workspace, candidates, log)
        try:
            await asyncio.to_thread(prune_scratch_refs, workspace, candidates, settings.git_timeout)
        except GitCommandError as exc:
            logger.warning("Could not prune scratch refs in %s: %s", workspace, exc)

        stage = CombineStage.PUSHING_RESULT
        await asyncio.to_thread(force_push, workspace, target, DEFAULT_REMOTE, settings.git_timeout)
        log.add(f"Force pushed {target} to {DEFAULT_REMOTE}")

        merged = [r.iid for r in results if r.merged]
        skipped = [r.iid for r in results if not r.merged]
        summary = f"Merged {len(merged)} of {len(results)} merge requests into {target}"
        if skipped:
            summary += "; skipped " + ", ".join(f"!{iid}" for iid in skipped)
        log.add(summary)
        outcome: RunOutcome = Success(branch=target, log=log, merged=merged, skipped=skipped)

    except CombinerError as exc:
        log.add(f"Error while {stage.value}: {exc}", level=logging.ERROR)
        outcome = Failure(branch=target, reason=str(exc), log=log)
    except Exception as exc:
        logger.exception("Unexpected error while %s | project=%d", stage.value, job.project_id)
        log.add(f"Unexpected error while {stage.value}: {exc}", level=logging.ERROR)
        outcome = Failure(branch=target, reason=str(exc), log=log)

    await _report(job, gateway, outcome)
    return outcome
