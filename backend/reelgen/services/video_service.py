from __future__ import annotations

import asyncio
import logging
import random
import shutil
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ..config import Settings, project_path
from ..errors import CompositionFailure, DirectoryCreationFailure, NonHookCompositionUnsupported, PipelineError
from ..models import GenerateVideoRequest
from ..state import ClipRepository, JobRepository
from .clip_service import ClipSelection, select_clips
from .media_service import MediaToolkit
from .progress_service import ProgressReporter, build_checkpoints
from .tts_service import VoiceoverSynthesizer


logger = logging.getLogger(__name__)


def ensure_directory(path: Path) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DirectoryCreationFailure(str(path), str(exc)) from exc
    return path


def _discard(job_id: str, path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("[job %s] could not remove partial output %s: %s", job_id, path, exc)


@contextmanager
def job_workspace(temp_root: Path, job_id: str) -> Iterator[Path]:
    """Scratch directory owned by one job, removed on every exit path."""
    workspace = ensure_directory(temp_root / job_id)
    try:
        yield workspace
    finally:
        shutil.rmtree(workspace, ignore_errors=True)
        logger.debug("[job %s] workspace removed: %s", job_id, workspace)


@dataclass
class GenerationPipeline:
    jobs: JobRepository
    catalog: ClipRepository
    media: MediaToolkit
    voiceover: VoiceoverSynthesizer
    media_root: Path
    output_dir: Path
    temp_dir: Path
    output_url_prefix: str = "/videos"
    hook_category: str = "hooks"
    hook_duration: float = 4.0
    default_frame_size: tuple[int, int] = (1080, 1920)
    checkpoints: Mapping[str, int] | None = None
    heartbeat_interval: float = 30.0
    compose_realtime_factor: float = 4.0
    rng: random.Random | None = None

    def __post_init__(self) -> None:
        self.checkpoints = build_checkpoints(self.checkpoints)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        jobs: JobRepository,
        catalog: ClipRepository,
        media: MediaToolkit | None = None,
        voiceover: VoiceoverSynthesizer | None = None,
    ) -> "GenerationPipeline":
        media = media or MediaToolkit(settings.ffmpeg_bin, settings.ffprobe_bin)
        return cls(
            jobs=jobs,
            catalog=catalog,
            media=media,
            voiceover=voiceover or VoiceoverSynthesizer.from_settings(settings, media=media),
            media_root=project_path(settings.media_root),
            output_dir=project_path(settings.output_dir),
            temp_dir=project_path(settings.temp_dir),
            hook_category=settings.hook_category,
            hook_duration=settings.hook_duration,
            default_frame_size=(settings.output_width, settings.output_height),
            heartbeat_interval=settings.heartbeat_interval_seconds,
            compose_realtime_factor=settings.compose_realtime_factor,
        )

    def output_path_for(self, job_id: str) -> Path:
        return self.output_dir / f"{job_id}_final.mp4"

    async def run(self, job_id: str, request: GenerateVideoRequest) -> None:
        """Drive one job from pending to a terminal state."""
        reporter = ProgressReporter(self.jobs, job_id, self.checkpoints, self.heartbeat_interval)
        reporter.start()
        logger.info(
            "[job %s] categories=%s use_hook=%s total_length=%s clip_duration=%s",
            job_id,
            request.categories,
            request.use_hook,
            request.total_length,
            request.clip_duration,
        )
        output_path = self.output_path_for(job_id)
        try:
            with job_workspace(self.temp_dir, job_id) as workspace:
                output_url = await self._execute(job_id, request, reporter, workspace, output_path)
        except asyncio.CancelledError:
            _discard(job_id, output_path)
            reporter.fail("Video generation was interrupted")
            raise
        except PipelineError as exc:
            _discard(job_id, output_path)
            reporter.fail(str(exc))
            return
        except Exception as exc:
            logger.exception("[job %s] unexpected pipeline error", job_id)
            _discard(job_id, output_path)
            reporter.fail(f"Video generation failed: {exc}")
            return

        reporter.complete(output_url)

    async def _execute(
        self,
        job_id: str,
        request: GenerateVideoRequest,
        reporter: ProgressReporter,
        workspace: Path,
        output_path: Path,
    ) -> str:
        ensure_directory(self.output_dir)

        selection = select_clips(
            self.catalog,
            request.categories,
            request.total_length,
            request.clip_duration,
            request.use_hook,
            media_root=self.media_root,
            hook_duration=self.hook_duration,
            hook_category=self.hook_category,
            rng=self.rng,
            on_stage=reporter.checkpoint,
        )
        if selection.hook is None:
            raise NonHookCompositionUnsupported()

        reporter.checkpoint("trimming", f"trimming {len(selection.main)} clip(s)")
        trimmed = await self._trim_all(selection, workspace, request.clip_duration, reporter)

        voiceover_slot = request.total_length - self.hook_duration
        reporter.checkpoint("voiceover", "generating voiceover")
        voiceover_path = await self.voiceover.synthesize(
            request.script,
            workspace / "voiceover.m4a",
            expected_duration=voiceover_slot,
        )
        reporter.checkpoint("voiceover_ready", "voiceover ready")

        frame_size = await self.media.probe_frame_size(selection.hook)
        if frame_size is None:
            frame_size = self.default_frame_size
            logger.warning("[job %s] hook frame size unknown, using %sx%s", job_id, *frame_size)

        reporter.checkpoint("composing", f"composing {selection.segment_count} segment(s)")
        async with reporter.keep_alive(limit=request.total_length * self.compose_realtime_factor):
            await self.media.compose_video(
                selection.hook,
                trimmed,
                voiceover_path,
                output_path,
                frame_size,
                self.hook_duration,
                request.total_length,
            )

        reporter.checkpoint("finalizing", "verifying output")
        if not output_path.is_file() or output_path.stat().st_size <= 0:
            raise CompositionFailure(f"output file missing or empty: {output_path.name}")
        return f"{self.output_url_prefix.rstrip('/')}/{output_path.name}"

    async def _trim_all(
        self,
        selection: ClipSelection,
        workspace: Path,
        clip_duration: float,
        reporter: ProgressReporter,
    ) -> list[Path]:
        trimmed: list[Path] = []
        for index, source in enumerate(selection.main):
            target = workspace / f"trimmed-{index}.mp4"
            trimmed.append(await self.media.trim_clip(index, source, target, clip_duration))
            reporter.heartbeat()
        return trimmed
