"""Tests for mrcombiner/worker.py — per-project exclusion and dispatch."""

import asyncio

from mrcombiner.models import CombineJob
from mrcombiner.worker import CombineWorker


def _job(project_id, iid=1) -> CombineJob:
    return CombineJob(project_id=project_id, merge_request_iid=iid, target_branch="combined", label="ready")


class TestSubmit:
    def test_duplicate_project_is_rejected(self):
        async def _go():
            worker = CombineWorker(lambda job: asyncio.sleep(0))
            assert worker.submit(_job(1, iid=10)) is True
            assert worker.submit(_job(1, iid=11)) is False
            assert worker.is_active(1)

        asyncio.run(_go())

    def test_other_projects_are_accepted(self):
        async def _go():
            worker = CombineWorker(lambda job: asyncio.sleep(0))
            assert worker.submit(_job(1)) is True
            assert worker.submit(_job(2)) is True

        asyncio.run(_go())


class TestRun:
    def test_projects_run_concurrently(self):
        async def _go():
            started: list[int] = []
            release = asyncio.Event()

            async def runner(job):
                started.append(job.project_id)
                await release.wait()

            worker = CombineWorker(runner)
            loop = asyncio.create_task(worker.run())
            worker.submit(_job(1))
            worker.submit(_job(2))
            for _ in range(50):
                if len(started) == 2:
                    break
                await asyncio.sleep(0.01)
            both_started = sorted(started) == [1, 2]
            release.set()
            await worker.join()
            loop.cancel()
            await worker.shutdown()
            return both_started

        assert asyncio.run(_go()) is True

    def test_project_released_after_run(self):
        async def _go():
            seen: list[int] = []

            async def runner(job):
                seen.append(job.merge_request_iid)

            worker = CombineWorker(runner)
            loop = asyncio.create_task(worker.run())
            assert worker.submit(_job(1, iid=10))
            await worker.join()
            assert not worker.is_active(1)
            assert worker.submit(_job(1, iid=11))
            await worker.join()
            loop.cancel()
            await worker.shutdown()
            return seen

        assert asyncio.run(_go()) == [10, 11]

    def test_project_released_when_runner_raises(self):
        async def _go():
            async def runner(job):
                raise RuntimeError("boom")

            worker = CombineWorker(runner)
            loop = asyncio.create_task(worker.run())
            worker.submit(_job(1))
            await worker.join()
            active = worker.is_active(1)
            loop.cancel()
            await worker.shutdown()
            return active

        assert asyncio.run(_go()) is False

    def test_concurrency_is_bounded(self):
        async def _go():
            running = 0
            peak = 0

            async def runner(job):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1

            worker = CombineWorker(runner, max_concurrent=2)
            loop = asyncio.create_task(worker.run())
            for pid in range(6):
                worker.submit(_job(pid))
            await worker.join()
            loop.cancel()
            await worker.shutdown()
            return peak

        assert asyncio.run(_go()) == 2
