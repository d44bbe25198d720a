from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..config import Settings
from ..errors import JobQueueFull
from ..models import ACTIVE_STATUSES
from ..state import JobRepository


logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Job interrupted by service restart"


def fail_interrupted_jobs(jobs: JobRepository, message: str = INTERRUPTED_MESSAGE) -> list[str]:
    """Fail jobs a previous process left pending or processing."""
    failed: list[str] = []
    for job in jobs.list_by_status(ACTIVE_STATUSES):
        if jobs.update(
            job.id,
            only_if_status=ACTIVE_STATUSES,
            status="failed",
            progress=0,
            error=message,
            output_url=None,
        ):
            failed.append(job.id)
    return failed


class JobRunner:
    """Runs generation jobs as tasks on the current event loop.

    At most ``max_concurrent`` jobs execute at once and at most
    ``max_pending`` more wait for a slot; further submissions raise
    ``JobQueueFull``. Either limit set to 0 means unbounded. A watchdog fails
    ``processing`` jobs whose record has not changed for ``stall_timeout``
    seconds and cancels their task.
    """

    def __init__(
        self,
        jobs: JobRepository,
        max_concurrent: int = 2,
        max_pending: int = 16,
        stall_timeout: float = 900.0,
        watchdog_interval: float = 30.0,
    ) -> None:
        self.jobs = jobs
        self.max_concurrent = max(0, int(max_concurrent))
        self.max_pending = max(0, int(max_pending))
        self.stall_timeout = float(stall_timeout)
        self.watchdog_interval = float(watchdog_interval)
        self._semaphore = asyncio.Semaphore(self.max_concurrent) if self.max_concurrent else None
        self._tasks: dict[str, asyncio.Task] = {}
        self._running: set[str] = set()
        self._watchdog: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings, jobs: JobRepository) -> "JobRunner":
        return cls(
            jobs,
            max_concurrent=settings.max_concurrent_jobs,
            max_pending=settings.max_pending_jobs,
            stall_timeout=settings.job_stall_timeout_seconds,
            watchdog_interval=settings.watchdog_interval_seconds,
        )

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def waiting_count(self) -> int:
        return len(self._tasks) - len(self._running)

    def is_active(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def check_admission(self) -> None:
        if not self.max_concurrent or not self.max_pending:
            return
        if len(self._tasks) >= self.max_concurrent + self.max_pending:
            raise JobQueueFull(self.running_count, self.waiting_count)

    def submit(self, job_id: str, job: Callable[[], Awaitable[None]]) -> asyncio.Task:
        self.check_admission()
        task = asyncio.create_task(self._run(job_id, job), name=f"generation-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        logger.info(
            "[job %s] submitted (running=%s waiting=%s)",
            job_id,
            self.running_count,
            self.waiting_count,
        )
        return task

    async def _run(self, job_id: str, job: Callable[[], Awaitable[None]]) -> None:
        if self._semaphore is None:
            await self._execute(job_id, job)
            return
        async with self._semaphore:
            await self._execute(job_id, job)

    async def _execute(self, job_id: str, job: Callable[[], Awaitable[None]]) -> None:
        self._running.add(job_id)
        try:
            await job()
        except asyncio.CancelledError:
            logger.warning("[job %s] task cancelled", job_id)
            raise
        except Exception as exc:
            logger.exception("[job %s] task crashed outside the pipeline", job_id)
            self.jobs.update(
                job_id,
                only_if_status=ACTIVE_STATUSES,
                status="failed",
                progress=0,
                error=f"Video generation failed: {exc}",
                output_url=None,
            )
        finally:
            self._running.discard(job_id)

    def sweep_stalled(self) -> list[str]:
        """Fail and cancel processing jobs that stopped making progress."""
        failed: list[str] = []
        for job in self.jobs.list_stalled(self.stall_timeout):
            marked = self.jobs.update(
                job.id,
                only_if_status=("processing",),
                status="failed",
                progress=0,
                error=f"Job stalled: no progress for {self.stall_timeout:g} seconds",
                output_url=None,
            )
            task = self._tasks.get(job.id)
            if task is not None and not task.done():
                task.cancel()
            if marked:
                logger.warning("[job %s] marked failed by watchdog (last update %s)", job.id, job.updated_at)
                failed.append(job.id)
        return failed

    async def _watchdog_loop(self) -> None:
        while True:
            await asyncio.sleep(self.watchdog_interval)
            try:
                self.sweep_stalled()
            except Exception:
                logger.exception("Watchdog sweep failed")

    def start(self) -> None:
        if self._watchdog is None or self._watchdog.done():
            self._watchdog = asyncio.create_task(self._watchdog_loop(), name="generation-watchdog")

    async def join(self) -> None:
        """Wait until every submitted job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            await asyncio.gather(self._watchdog, return_exceptions=True)
            self._watchdog = None
        pending = [task for task in self._tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.info("Cancelled %s unfinished job(s) on shutdown", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
