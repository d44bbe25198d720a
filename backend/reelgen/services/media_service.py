from __future__ import annotations

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..errors import CompositionFailure, MediaToolUnavailable, NonHookCompositionUnsupported, TranscodeFailure


logger = logging.getLogger(__name__)

_STDERR_LIMIT = 400

TRIM_VIDEO_ARGS = ["-c:v", "libx264", "-preset", "veryfast", "-crf", "23"]
TRIM_AUDIO_ARGS = ["-c:a", "aac", "-b:a", "128k"]
VOICEOVER_AUDIO_ARGS = ["-vn", "-acodec", "aac", "-b:a", "128k"]
FINAL_CODEC_ARGS = ["-c:v", "libx264", "-c:a", "aac", "-b:a", "192k", "-movflags", "+faststart"]


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def error_excerpt(self) -> str:
        text = (self.stderr or self.stdout or "").strip()
        return text[-_STDERR_LIMIT:] if text else f"exit code {self.returncode}"


async def run_process(cmd: list[str]) -> ProcessResult:
    """Run an external tool without blocking the event loop.

    The child is killed if the awaiting task is cancelled.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise MediaToolUnavailable(cmd[0]) from exc

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    return ProcessResult(
        returncode=int(proc.returncode or 0),
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def _format_seconds(value: float) -> str:
    text = f"{float(value):.3f}".rstrip("0").rstrip(".")
    return text or "0"


def build_trim_command(ffmpeg_bin: str, source: Path, output: Path, clip_duration: float) -> list[str]:
    return [
        ffmpeg_bin,
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        str(source),
        "-t",
        _format_seconds(clip_duration),
        "-vf",
        "setpts=PTS-STARTPTS",
        *TRIM_VIDEO_ARGS,
        *TRIM_AUDIO_ARGS,
        str(output),
    ]


def build_audio_transcode_command(ffmpeg_bin: str, source: Path, output: Path) -> list[str]:
    return [
        ffmpeg_bin,
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        str(source),
        *VOICEOVER_AUDIO_ARGS,
        str(output),
    ]


def build_filter_complex(
    main_count: int,
    frame_size: tuple[int, int],
    hook_duration: float,
    total_length: float,
) -> str:
    """Filter graph for ``hook + main_count`` video inputs followed by the voiceover.

    Input 0 is the hook, inputs ``1..main_count`` the trimmed clips and input
    ``main_count + 1`` the voiceover. The hook keeps its own audio for the
    first ``hook_duration`` seconds; the voiceover fills the rest.
    """
    if main_count < 1:
        raise ValueError("at least one main clip is required")
    voiceover_duration = total_length - hook_duration
    if voiceover_duration <= 0:
        raise ValueError("total_length must exceed hook_duration")

    width, height = frame_size
    parts = ["[0:v]setpts=PTS-STARTPTS,setsar=1[hookv]"]
    for index in range(1, main_count + 1):
        parts.append(f"[{index}:v]setpts=PTS-STARTPTS,scale={width}:{height},setsar=1[clip{index}v]")

    video_inputs = "[hookv]" + "".join(f"[clip{index}v]" for index in range(1, main_count + 1))
    parts.append(f"{video_inputs}concat=n={main_count + 1}:v=1:a=0[vout]")

    parts.append(f"[0:a]atrim=duration={_format_seconds(hook_duration)},asetpts=PTS-STARTPTS[hooka]")
    parts.append(
        f"[{main_count + 1}:a]atrim=duration={_format_seconds(voiceover_duration)},asetpts=PTS-STARTPTS[voa]"
    )
    parts.append("[hooka][voa]concat=n=2:v=0:a=1[aout]")
    return "; ".join(parts)


def build_compose_command(
    ffmpeg_bin: str,
    hook: Path,
    mains: list[Path],
    voiceover: Path,
    output: Path,
    frame_size: tuple[int, int],
    hook_duration: float,
    total_length: float,
) -> list[str]:
    cmd = [ffmpeg_bin, "-y", "-hide_banner", "-loglevel", "error", "-i", str(hook)]
    for path in mains:
        cmd.extend(["-i", str(path)])
    cmd.extend(["-i", str(voiceover)])
    cmd.extend(
        [
            "-filter_complex",
            build_filter_complex(len(mains), frame_size, hook_duration, total_length),
            "-map",
            "[vout]",
            "-map",
            "[aout]",
            *FINAL_CODEC_ARGS,
            str(output),
        ]
    )
    return cmd


@dataclass
class MediaToolkit:
    """ffmpeg/ffprobe invocations used by the generation pipeline."""

    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"

    def check_available(self) -> None:
        for binary in (self.ffmpeg_bin, self.ffprobe_bin):
            if not (shutil.which(binary) or Path(binary).is_file()):
                raise MediaToolUnavailable(binary)

    async def trim_clip(self, index: int, source: Path, output: Path, clip_duration: float) -> Path:
        cmd = build_trim_command(self.ffmpeg_bin, source, output, clip_duration)
        logger.info("Trimming clip %s: %s", index + 1, source.name)
        result = await run_process(cmd)
        if not result.ok or not output.exists():
            logger.error("ffmpeg trim failed for clip %s: %s", index + 1, result.error_excerpt())
            raise TranscodeFailure(index, result.error_excerpt())
        return output

    async def transcode_audio(self, source: Path, output: Path) -> ProcessResult:
        return await run_process(build_audio_transcode_command(self.ffmpeg_bin, source, output))

    async def probe_frame_size(self, path: Path) -> tuple[int, int] | None:
        cmd = [
            self.ffprobe_bin,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height",
            "-of",
            "json",
            str(path),
        ]
        try:
            result = await run_process(cmd)
        except MediaToolUnavailable:
            logger.warning("ffprobe unavailable, cannot read frame size of %s", path.name)
            return None
        if not result.ok:
            logger.warning("ffprobe failed for %s: %s", path.name, result.error_excerpt())
            return None
        try:
            streams = json.loads(result.stdout or "{}").get("streams") or []
            width = int(streams[0]["width"])
            height = int(streams[0]["height"])
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Unreadable ffprobe output for %s", path.name)
            return None
        if width <= 0 or height <= 0:
            return None
        return width, height

    async def probe_duration(self, path: Path) -> float:
        cmd = [
            self.ffprobe_bin,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        result = await run_process(cmd)
        if not result.ok:
            raise ValueError(f"ffprobe failed for {path.name}: {result.error_excerpt()}")
        return float((result.stdout or "0").strip() or 0.0)

    async def compose_video(
        self,
        hook: Path | None,
        mains: list[Path],
        voiceover: Path,
        output: Path,
        frame_size: tuple[int, int],
        hook_duration: float,
        total_length: float,
    ) -> Path:
        if hook is None:
            raise NonHookCompositionUnsupported()
        if not mains:
            raise CompositionFailure("no main clips available for the final video")
        try:
            cmd = build_compose_command(
                self.ffmpeg_bin, hook, mains, voiceover, output, frame_size, hook_duration, total_length
            )
        except ValueError as exc:
            raise CompositionFailure(str(exc)) from exc

        output.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Composing %s segment(s) into %s", len(mains) + 1, output.name)
        result = await run_process(cmd)
        if not result.ok or not output.exists():
            logger.error("ffmpeg compose failed: %s", result.error_excerpt())
            raise CompositionFailure(result.error_excerpt())
        return output
