"""Tests for ffmpeg argument building and process handling."""

import shutil
from pathlib import Path

import pytest

from conftest import run_async
from reelgen.errors import (
    CompositionFailure,
    MediaToolUnavailable,
    NonHookCompositionUnsupported,
    TranscodeFailure,
)
from reelgen.services.media_service import (
    MediaToolkit,
    build_audio_transcode_command,
    build_compose_command,
    build_filter_complex,
    build_trim_command,
    run_process,
)


class TestFilterComplex:
    def test_two_main_clips(self):
        graph = build_filter_complex(2, (1080, 1920), hook_duration=4, total_length=14)
        assert graph.split("; ") == [
            "[0:v]setpts=PTS-STARTPTS,setsar=1[hookv]",
            "[1:v]setpts=PTS-STARTPTS,scale=1080:1920,setsar=1[clip1v]",
            "[2:v]setpts=PTS-STARTPTS,scale=1080:1920,setsar=1[clip2v]",
            "[hookv][clip1v][clip2v]concat=n=3:v=1:a=0[vout]",
            "[0:a]atrim=duration=4,asetpts=PTS-STARTPTS[hooka]",
            "[3:a]atrim=duration=10,asetpts=PTS-STARTPTS[voa]",
            "[hooka][voa]concat=n=2:v=0:a=1[aout]",
        ]

    def test_voiceover_is_the_last_input(self):
        graph = build_filter_complex(13, (720, 1280), hook_duration=4, total_length=65)
        assert "[14:a]atrim=duration=61," in graph
        assert "concat=n=14:v=1:a=0[vout]" in graph
        assert graph.count("scale=720:1280") == 13

    def test_fractional_durations(self):
        graph = build_filter_complex(1, (1080, 1920), hook_duration=3.5, total_length=9.25)
        assert "atrim=duration=3.5," in graph
        assert "atrim=duration=5.75," in graph

    def test_rejects_total_not_longer_than_hook(self):
        with pytest.raises(ValueError):
            build_filter_complex(1, (1080, 1920), hook_duration=4, total_length=4)

    def test_rejects_no_main_clips(self):
        with pytest.raises(ValueError):
            build_filter_complex(0, (1080, 1920), hook_duration=4, total_length=10)


def test_compose_command_layout():
    cmd = build_compose_command(
        "ffmpeg",
        Path("hook.mp4"),
        [Path("t0.mp4"), Path("t1.mp4")],
        Path("vo.m4a"),
        Path("out.mp4"),
        (1080, 1920),
        4,
        14,
    )
    inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
    assert inputs == ["hook.mp4", "t0.mp4", "t1.mp4", "vo.m4a"]
    assert cmd[cmd.index("-movflags") + 1] == "+faststart"
    maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
    assert maps == ["[vout]", "[aout]"]
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-b:a") + 1] == "192k"
    assert cmd[-1] == "out.mp4"


def test_trim_command_resets_timestamps():
    cmd = build_trim_command("ffmpeg", Path("in.mp4"), Path("trimmed-0.mp4"), 5)
    assert cmd[cmd.index("-t") + 1] == "5"
    assert cmd[cmd.index("-vf") + 1] == "setpts=PTS-STARTPTS"
    assert cmd[cmd.index("-crf") + 1] == "23"
    assert cmd[cmd.index("-preset") + 1] == "veryfast"
    assert cmd[-1] == "trimmed-0.mp4"


def test_audio_transcode_command_drops_video():
    cmd = build_audio_transcode_command("ffmpeg", Path("raw.mp3"), Path("voiceover.m4a"))
    assert "-vn" in cmd
    assert cmd[cmd.index("-acodec") + 1] == "aac"
    assert cmd[cmd.index("-b:a") + 1] == "128k"


def test_missing_binary_raises_media_tool_unavailable():
    with pytest.raises(MediaToolUnavailable):
        run_async(run_process(["reelgen-no-such-binary-xyz", "-version"]))


def test_check_available_reports_missing_tool():
    with pytest.raises(MediaToolUnavailable) as excinfo:
        MediaToolkit(ffmpeg_bin="reelgen-no-such-binary-xyz").check_available()
    assert excinfo.value.binary == "reelgen-no-such-binary-xyz"


@pytest.mark.skipif(shutil.which("false") is None, reason="needs the false utility")
def test_trim_failure_carries_clip_index(tmp_path):
    media = MediaToolkit(ffmpeg_bin=shutil.which("false"))
    with pytest.raises(TranscodeFailure) as excinfo:
        run_async(media.trim_clip(2, tmp_path / "in.mp4", tmp_path / "out.mp4", 5))
    assert excinfo.value.index == 2
    assert "clip 3" in str(excinfo.value)


@pytest.mark.skipif(shutil.which("false") is None, reason="needs the false utility")
def test_compose_failure_raises_composition_failure(tmp_path):
    media = MediaToolkit(ffmpeg_bin=shutil.which("false"))
    with pytest.raises(CompositionFailure):
        run_async(
            media.compose_video(
                tmp_path / "hook.mp4",
                [tmp_path / "t0.mp4"],
                tmp_path / "vo.m4a",
                tmp_path / "out" / "final.mp4",
                (1080, 1920),
                4,
                10,
            )
        )


def test_compose_without_hook_is_unsupported(tmp_path):
    with pytest.raises(NonHookCompositionUnsupported):
        run_async(
            MediaToolkit().compose_video(
                None, [tmp_path / "t0.mp4"], tmp_path / "vo.m4a", tmp_path / "out.mp4", (1080, 1920), 4, 10
            )
        )


def test_probe_frame_size_returns_none_when_probe_fails(tmp_path):
    media = MediaToolkit(ffprobe_bin="reelgen-no-such-binary-xyz")
    assert run_async(media.probe_frame_size(tmp_path / "hook.mp4")) is None
