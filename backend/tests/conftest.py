"""Shared fixtures: in-memory stores, a fake ffmpeg toolkit and a fake speech API."""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from threading import Lock
from uuid import uuid4

import httpx
import pytest

from reelgen.errors import NonHookCompositionUnsupported, TranscodeFailure
from reelgen.models import GenerateVideoRequest, GenerationJob, VideoClip
from reelgen.services.media_service import MediaToolkit, ProcessResult
from reelgen.services.tts_service import VoiceoverSynthesizer
from reelgen.services.video_service import GenerationPipeline


def _iso(offset_seconds=0.0):
    moment = datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)
    return moment.isoformat(timespec="microseconds")


class InMemoryJobStore:
    def __init__(self):
        self.jobs = {}
        self.history = {}
        self.lock = Lock()

    def create(self, request):
        job_id = uuid4().hex
        now = _iso()
        with self.lock:
            self.jobs[job_id] = GenerationJob(
                id=job_id,
                categories=list(request.categories),
                script=request.script,
                use_hook=request.use_hook,
                total_length=request.total_length,
                clip_duration=request.clip_duration,
                created_at=now,
                updated_at=now,
            )
            self.history[job_id] = [("pending", 0)]
        return job_id

    def get(self, job_id):
        with self.lock:
            job = self.jobs.get(job_id)
            return job.model_copy() if job else None

    def update(self, job_id, *, only_if_status=None, **fields):
        with self.lock:
            job = self.jobs.get(job_id)
            if job is None or not fields:
                return False
            if only_if_status is not None and job.status not in set(only_if_status):
                return False
            updated = job.model_copy(update={**fields, "updated_at": _iso()})
            self.jobs[job_id] = updated
            self.history[job_id].append((updated.status, updated.progress))
            return True

    def list_by_status(self, statuses):
        wanted = set(statuses)
        with self.lock:
            return [job.model_copy() for job in self.jobs.values() if job.status in wanted]

    def list_stalled(self, older_than_seconds):
        cutoff = _iso(-older_than_seconds)
        with self.lock:
            return [
                job.model_copy()
                for job in self.jobs.values()
                if job.status == "processing" and (job.updated_at or "") < cutoff
            ]

    def backdate(self, job_id, seconds):
        with self.lock:
            job = self.jobs[job_id]
            self.jobs[job_id] = job.model_copy(update={"updated_at": _iso(-seconds)})


class InMemoryCatalog:
    def __init__(self):
        self.clips = []

    def add(self, name, category, url, duration="5.00s"):
        clip = VideoClip(
            id=len(self.clips) + 1,
            name=name,
            category=category,
            url=url,
            duration=duration,
            created_at=_iso(len(self.clips)),
        )
        self.clips.append(clip)
        return clip

    def list_by_category(self, category):
        matching = [clip for clip in self.clips if clip.category == category]
        return sorted(matching, key=lambda clip: clip.created_at, reverse=True)

    def list_all(self):
        return sorted(self.clips, key=lambda clip: clip.created_at, reverse=True)


class FakeMedia(MediaToolkit):
    """Stands in for ffmpeg: writes placeholder files and records calls."""

    def __init__(self, fail_trim_at=None, frame_size=(720, 1280), gates=None):
        super().__init__(ffmpeg_bin="ffmpeg", ffprobe_bin="ffprobe")
        self.fail_trim_at = fail_trim_at
        self.frame_size = frame_size
        self.gates = gates if gates is not None else {}
        self.trimmed = []
        self.composed = []
        self.transcode_ok = True

    def check_available(self):
        return None

    async def trim_clip(self, index, source, output, clip_duration):
        if index == self.fail_trim_at:
            raise TranscodeFailure(index, "simulated encoder error")
        output.write_bytes(b"trimmed:" + source.name.encode())
        self.trimmed.append((index, source, output, clip_duration))
        return output

    async def transcode_audio(self, source, output):
        if not self.transcode_ok:
            return ProcessResult(returncode=1, stdout="", stderr="Invalid data found when processing input")
        output.write_bytes(source.read_bytes())
        return ProcessResult(returncode=0, stdout="", stderr="")

    async def probe_frame_size(self, path):
        return self.frame_size

    async def probe_duration(self, path):
        if path.stat().st_size == 0:
            raise ValueError(f"ffprobe failed for {path.name}: moov atom not found")
        return 12.345

    async def compose_video(self, hook, mains, voiceover, output, frame_size, hook_duration, total_length):
        gate = self.gates.get(output.name.split("_")[0])
        if gate is not None:
            await gate.wait()
        if hook is None:
            raise NonHookCompositionUnsupported()
        self.composed.append(
            {
                "hook": hook,
                "mains": list(mains),
                "mains_present": all(path.exists() for path in mains),
                "voiceover": voiceover,
                "voiceover_present": voiceover.exists(),
                "output": output,
                "frame_size": frame_size,
                "hook_duration": hook_duration,
                "total_length": total_length,
            }
        )
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"final-video")
        return output


def speech_transport(status_code=200, content=b"ID3-fake-mpeg-audio", calls=None):
    def handler(request):
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, content=content)

    return httpx.MockTransport(handler)


def add_clip(catalog, media_root, category, name, exists=True):
    path = media_root / "uploads" / name
    if exists:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"video")
    return catalog.add(name=name, category=category, url=f"/uploads/{name}", duration="5.00s")


def make_request(**overrides):
    values = {
        "categories": ["gym"],
        "script": "Discipline beats motivation.",
        "use_hook": True,
        "total_length": 14,
        "clip_duration": 5,
    }
    values.update(overrides)
    return GenerateVideoRequest(**values)


def run_async(coro):
    return asyncio.run(coro)


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def catalog():
    return InMemoryCatalog()


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "media"
    (root / "uploads").mkdir(parents=True)
    return root


@pytest.fixture
def stocked_catalog(catalog, media_root):
    """One hook plus four gym and three cars clips, all present on disk."""
    add_clip(catalog, media_root, "hooks", "axe_hook.mp4")
    for index in range(4):
        add_clip(catalog, media_root, "gym", f"gym-{index}.mp4")
    for index in range(3):
        add_clip(catalog, media_root, "cars", f"cars-{index}.mp4")
    return catalog


@pytest.fixture
def make_pipeline(tmp_path, job_store, catalog, media_root):
    def factory(media=None, transport=None, **overrides):
        media = media or FakeMedia()
        voiceover = VoiceoverSynthesizer(
            api_key="test-key",
            media=media,
            transport=transport or speech_transport(),
        )
        values = {
            "jobs": job_store,
            "catalog": catalog,
            "media": media,
            "voiceover": voiceover,
            "media_root": media_root,
            "output_dir": tmp_path / "public" / "videos",
            "temp_dir": tmp_path / "tmp",
            "rng": random.Random(7),
        }
        values.update(overrides)
        return GenerationPipeline(**values)

    return factory
