"""Background worker — hands webhook jobs to the orchestrator.

The webhook handler never waits for a run: it calls ``submit()`` and
returns.  The worker's ``run()`` loop (started in the FastAPI lifespan)
drains the queue and dispatches each job as its own asyncio task.

Per-project mutual exclusion: a project is *active* from the moment its
job is accepted until its run finishes (success or failure).  A second
job for an active project is rejected, not queued.  Different projects
run in parallel, bounded by *max_concurrent*.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from mrcombiner.models import CombineJob

logger = logging.getLogger(__name__)

Runner = Callable[[CombineJob], Awaitable[object]]


class CombineWorker:
    """Queue + per-project in-flight set + bounded concurrency."""

    def __init__(self, runner: Runner, max_concurrent: int = 8):
        self._runner = runner
        self._queue: asyncio.Queue[CombineJob] = asyncio.Queue()
        self._sem = asyncio.Semaphore(max_concurrent)
        self._active: set[int] = set()
        self._tasks: set[asyncio.Task] = set()

    def is_active(self, project_id: int) -> bool:
        return project_id in self._active

    def submit(self, job: CombineJob) -> bool:
        """Accept *job* unless its project already has a run in flight."""
        if job.project_id in self._active:
            logger.info(
                "Project %d is already being processed, ignoring trigger from !%d",
                job.project_id, job.merge_request_iid,
            )
            return False
        self._active.add(job.project_id)
        self._queue.put_nowait(job)
        logger.info(
            "Queued combine | project=%d | trigger=!%d | branch=%s",
            job.project_id, job.merge_request_iid, job.target_branch,
        )
        return True

    async def _run_job(self, job: CombineJob) -> None:
        async with self._sem:
            try:
                await self._runner(job)
            except Exception:
                logger.exception("Uncaught error in combine run | project=%d", job.project_id)
            finally:
                self._active.discard(job.project_id)
                self._queue.task_done()

    async def run(self) -> None:
        """Drain loop: one task per job, forever (cancel to stop)."""
        logger.info("Combine worker started")
        while True:
            job = await self._queue.get()
            task = asyncio.create_task(self._run_job(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def join(self) -> None:
        """Wait until every accepted job has finished."""
        await self._queue.join()

    async def shutdown(self) -> None:
        """Cancel in-flight runs."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Combine worker stopped")
