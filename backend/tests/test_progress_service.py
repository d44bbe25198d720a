"""Tests for the checkpoint table and the progress reporter."""

import asyncio

import pytest

from conftest import make_request, run_async
from reelgen.services.progress_service import (
    DEFAULT_CHECKPOINTS,
    STAGE_ORDER,
    ProgressReporter,
    build_checkpoints,
)


def test_default_table_is_ordered():
    values = [DEFAULT_CHECKPOINTS[name] for name in STAGE_ORDER]
    assert values == [0, 10, 15, 25, 40, 60, 80, 90, 100]


class TestBuildCheckpoints:
    def test_override_single_value(self):
        table = build_checkpoints({"voiceover": 50})
        assert table["voiceover"] == 50
        assert table["trimming"] == 25

    def test_unknown_name_rejected(self):
        with pytest.raises(ValueError, match="unknown"):
            build_checkpoints({"uploading": 5})

    def test_decreasing_override_rejected(self):
        with pytest.raises(ValueError, match="lower"):
            build_checkpoints({"composing": 20})

    def test_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            build_checkpoints({"started": -1})

    def test_completed_must_be_100(self):
        with pytest.raises(ValueError):
            build_checkpoints({"completed": 95})


class TestProgressReporter:
    def test_happy_path_writes(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id)
        reporter.start()
        reporter.checkpoint("hook_lookup")
        reporter.checkpoint("main_clips")
        reporter.complete("/videos/x_final.mp4")

        job = job_store.get(job_id)
        assert job.status == "completed"
        assert job.progress == 100
        assert job.output_url == "/videos/x_final.mp4"
        assert job_store.history[job_id] == [
            ("pending", 0),
            ("processing", 0),
            ("processing", 10),
            ("processing", 15),
            ("completed", 100),
        ]

    def test_never_moves_backwards(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id)
        reporter.start()
        reporter.checkpoint("voiceover")
        reporter.checkpoint("hook_lookup")
        assert job_store.get(job_id).progress == 40

    def test_fail_resets_progress_and_clears_output(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id)
        reporter.start()
        reporter.checkpoint("composing")
        reporter.fail("boom")
        job = job_store.get(job_id)
        assert (job.status, job.progress, job.error, job.output_url) == ("failed", 0, "boom", None)

    def test_terminal_record_is_not_overwritten(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id)
        reporter.start()
        job_store.update(job_id, status="failed", progress=0, error="Job stalled")

        assert reporter.checkpoint("trimming") is False
        assert reporter.complete("/videos/late.mp4") is False
        job = job_store.get(job_id)
        assert job.status == "failed"
        assert job.error == "Job stalled"
        assert job.output_url is None

    def test_custom_table(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id, {"hook_lookup": 5})
        reporter.start()
        reporter.checkpoint("hook_lookup")
        assert job_store.get(job_id).progress == 5


class TestHeartbeat:
    def test_throttled_until_interval_passes(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id, heartbeat_interval=3600)
        reporter.start()
        reporter.checkpoint("trimming")
        before = len(job_store.history[job_id])

        assert reporter.heartbeat() is True
        assert len(job_store.history[job_id]) == before

        reporter.heartbeat(force=True)
        assert job_store.history[job_id][-1] == ("processing", 25)
        assert len(job_store.history[job_id]) == before + 1

    def test_refreshes_updated_at_without_moving_progress(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id, heartbeat_interval=0)
        reporter.start()
        reporter.checkpoint("composing")
        job_store.backdate(job_id, 600)
        assert job_store.list_stalled(300)

        reporter.heartbeat()
        assert job_store.list_stalled(300) == []
        assert job_store.get(job_id).progress == 80

    def test_no_effect_on_terminal_record(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id, heartbeat_interval=0)
        reporter.start()
        reporter.fail("boom")
        assert reporter.heartbeat() is False
        assert job_store.get(job_id).status == "failed"

    def test_keep_alive_beats_while_body_runs(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id, heartbeat_interval=0.02)
        reporter.start()

        async def scenario():
            async with reporter.keep_alive(limit=10):
                await asyncio.sleep(0.15)

        run_async(scenario())
        beats = job_store.history[job_id][2:]
        assert len(beats) >= 3
        assert set(beats) == {("processing", 0)}

    def test_keep_alive_stops_at_limit(self, job_store):
        job_id = job_store.create(make_request())
        reporter = ProgressReporter(job_store, job_id, heartbeat_interval=0.02)
        reporter.start()

        async def scenario():
            async with reporter.keep_alive(limit=0.05):
                await asyncio.sleep(0.3)

        run_async(scenario())
        assert len(job_store.history[job_id]) <= 2 + 4
