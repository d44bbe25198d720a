from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

from ..models import ACTIVE_STATUSES
from ..state import JobRepository


logger = logging.getLogger(__name__)

# Stage boundaries in pipeline order. Values are coarse stage markers, not a
# measure of media processed.
STAGE_ORDER: tuple[str, ...] = (
    "started",
    "hook_lookup",
    "main_clips",
    "trimming",
    "voiceover",
    "voiceover_ready",
    "composing",
    "finalizing",
    "completed",
)

DEFAULT_CHECKPOINTS: dict[str, int] = {
    "started": 0,
    "hook_lookup": 10,
    "main_clips": 15,
    "trimming": 25,
    "voiceover": 40,
    "voiceover_ready": 60,
    "composing": 80,
    "finalizing": 90,
    "completed": 100,
}


def build_checkpoints(overrides: Mapping[str, int] | None = None) -> dict[str, int]:
    table = dict(DEFAULT_CHECKPOINTS)
    for name, value in (overrides or {}).items():
        if name not in table:
            raise ValueError(f"unknown progress checkpoint: {name}")
        table[name] = int(value)

    previous = -1
    for name in STAGE_ORDER:
        value = table[name]
        if value < 0 or value > 100:
            raise ValueError(f"checkpoint {name} out of range: {value}")
        if value < previous:
            raise ValueError(f"checkpoint {name} ({value}) is lower than the stage before it ({previous})")
        previous = value
    if table["completed"] != 100:
        raise ValueError("the completed checkpoint must be 100")
    return table


class ProgressReporter:
    """Writes status/progress for one job at fixed stage boundaries.

    Every write is guarded on the job still being active, so a record the
    watchdog already failed stays failed. Between checkpoints, ``heartbeat``
    refreshes the record so long stages are not mistaken for stalls.
    """

    def __init__(
        self,
        jobs: JobRepository,
        job_id: str,
        checkpoints: Mapping[str, int] | None = None,
        heartbeat_interval: float = 30.0,
    ) -> None:
        self.jobs = jobs
        self.job_id = job_id
        self.checkpoints = build_checkpoints(checkpoints)
        self.heartbeat_interval = max(0.0, float(heartbeat_interval))
        self.last_progress = 0
        self._last_write = time.monotonic()

    def _write(self, **fields: object) -> bool:
        written = self.jobs.update(self.job_id, only_if_status=ACTIVE_STATUSES, **fields)
        self._last_write = time.monotonic()
        if not written:
            logger.warning("[job %s] record is no longer active, update dropped: %s", self.job_id, fields)
        return written

    def start(self) -> bool:
        self.last_progress = self.checkpoints["started"]
        logger.info("[job %s] processing started", self.job_id)
        return self._write(status="processing", progress=self.last_progress, error=None, output_url=None)

    def checkpoint(self, name: str, message: str = "") -> bool:
        progress = max(self.checkpoints[name], self.last_progress)
        self.last_progress = progress
        logger.info("[job %s] %s%% %s", self.job_id, progress, message or name)
        return self._write(status="processing", progress=progress)

    def complete(self, output_url: str) -> bool:
        self.last_progress = self.checkpoints["completed"]
        logger.info("[job %s] completed: %s", self.job_id, output_url)
        return self._write(status="completed", progress=self.last_progress, output_url=output_url, error=None)

    def fail(self, message: str) -> bool:
        self.last_progress = 0
        logger.error("[job %s] failed: %s", self.job_id, message)
        return self._write(status="failed", progress=0, error=message, output_url=None)

    def heartbeat(self, force: bool = False) -> bool:
        """Touch the record without moving progress.

        Skipped when the last write is younger than ``heartbeat_interval``
        unless ``force`` is set.
        """
        if not force and time.monotonic() - self._last_write < self.heartbeat_interval:
            return True
        return self._write(status="processing", progress=self.last_progress)

    @asynccontextmanager
    async def keep_alive(self, limit: float | None = None) -> AsyncIterator[None]:
        """Heartbeat every ``heartbeat_interval`` seconds while the body runs.

        Beats stop after ``limit`` seconds so a hung child process still
        reaches the stall deadline.
        """
        async def beat() -> None:
            started = time.monotonic()
            while limit is None or time.monotonic() - started < limit:
                await asyncio.sleep(self.heartbeat_interval or 1.0)
                self.heartbeat(force=True)
            logger.warning("[job %s] keep-alive limit of %.0fs reached", self.job_id, limit)

        task = asyncio.create_task(beat(), name=f"heartbeat-{self.job_id}")
        try:
            yield
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
