from __future__ import annotations

import threading
from pathlib import Path

import pytest

from nekosubs.events import BatchCompleted, EventRecorder, JobFailed, JobStarted, JobSucceeded
from nekosubs.ffmpeg import FFmpegTooling, ToolNotFound
from nekosubs.jobs import JobQueue
from nekosubs.runner import CANCELLED_REASON, BatchRunner, BatchState, StartResult
from nekosubs.settings import BatchSettings, CompressionLevel, OutputContainer


def _video(folder: Path, name: str) -> Path:
    path = folder / name
    path.write_bytes(b"video")
    return path


@pytest.fixture
def runner(tooling, tmp_path) -> BatchRunner:
    return BatchRunner(tooling, log_dir=tmp_path / "logs", kill_timeout=0.5)


def test_end_to_end_batch_writes_outputs_in_order(runner, fake_ffmpeg, media_dir, tmp_path):
    _video(media_dir, "a.mp4")
    _video(media_dir, "b.mkv")
    (media_dir / "b.srt").write_text("1\n00:00:00,000 --> 00:00:01,000\nHi\n")
    queue = JobQueue()
    queue.add_job(media_dir / "a.mp4", auto_subtitle=False)
    queue.add_job(media_dir / "b.mkv")
    out_dir = tmp_path / "out"
    settings = BatchSettings(
        output_directory=out_dir,
        output_container=OutputContainer.MP4,
        compression_level=CompressionLevel.MEDIUM,
    )
    recorder = EventRecorder()
    runner.subscribe(recorder)

    assert runner.start(queue.snapshot(), settings) is StartResult.OK
    assert runner.wait(timeout=10) is BatchState.COMPLETED

    calls = fake_ffmpeg.calls()
    assert len(calls) == 2
    assert "a.mp4" in calls[0] and "subtitles=" not in calls[0]
    assert "b.mkv" in calls[1] and "subtitles=" in calls[1] and "b.srt" in calls[1]
    assert (out_dir / "a_merged.mp4").exists()
    assert (out_dir / "b_merged.mp4").exists()
    assert recorder.names() == [
        "job_started",
        "job_succeeded",
        "job_started",
        "job_succeeded",
        "batch_completed",
    ]
    final = recorder.events[-1]
    assert isinstance(final, BatchCompleted)
    assert len(final.summary.succeeded) == 2
    assert not final.summary.failed
    assert runner.cursor == 2
    assert runner.progress == 1.0


def test_failed_job_does_not_abort_the_batch(runner, fake_ffmpeg, media_dir):
    queue = JobQueue()
    broken = queue.add_job(_video(media_dir, "BROKEN.mp4"))
    good = queue.add_job(_video(media_dir, "good.mp4"))
    recorder = EventRecorder()
    runner.subscribe(recorder)

    runner.start(queue.snapshot(), BatchSettings())

    assert runner.wait(timeout=10) is BatchState.COMPLETED
    assert recorder.names() == ["job_started", "job_failed", "job_started", "job_succeeded", "batch_completed"]
    failure = next(event for event in recorder.events if isinstance(event, JobFailed))
    assert failure.job == broken
    assert "exited with code 1" in failure.reason
    assert "Invalid data found" in failure.reason
    summary = recorder.summary()
    assert summary.succeeded == (good,)
    assert [job for job, _ in summary.failed] == [broken]
    assert runner.cursor == 2


def test_video_removed_after_queueing_fails_only_that_job(runner, fake_ffmpeg, media_dir):
    queue = JobQueue()
    vanished = queue.add_job(_video(media_dir, "gone.mp4"))
    queue.add_job(_video(media_dir, "kept.mp4"))
    vanished.video_path.unlink()
    recorder = EventRecorder()
    runner.subscribe(recorder)

    runner.start(queue.snapshot(), BatchSettings())

    assert runner.wait(timeout=10) is BatchState.COMPLETED
    failure = recorder.events[1]
    assert isinstance(failure, JobFailed)
    assert "Video not found" in failure.reason
    assert isinstance(recorder.events[3], JobSucceeded)
    assert len(fake_ffmpeg.calls()) == 1


def test_missing_ffmpeg_rejects_start_without_events(media_dir, tmp_path):
    queue = JobQueue()
    queue.add_job(_video(media_dir, "a.mp4"))
    runner = BatchRunner(FFmpegTooling("nekosubs-definitely-missing-ffmpeg"), log_dir=tmp_path / "logs")
    recorder = EventRecorder()
    runner.subscribe(recorder)

    with pytest.raises(ToolNotFound):
        runner.start(queue.snapshot(), BatchSettings())

    assert runner.state is BatchState.IDLE
    assert recorder.events == []


def test_empty_queue_is_rejected(runner):
    assert runner.start((), BatchSettings()) is StartResult.EMPTY_QUEUE
    assert runner.state is BatchState.IDLE


def test_cancel_terminates_running_process(runner, fake_ffmpeg, media_dir, tmp_path, monkeypatch, wait_for_file):
    marker = tmp_path / "ffmpeg-running"
    monkeypatch.setenv("FAKE_FFMPEG_HANG", str(marker))
    queue = JobQueue()
    first = queue.add_job(_video(media_dir, "long.mp4"))
    second = queue.add_job(_video(media_dir, "next.mp4"))
    recorder = EventRecorder()
    runner.subscribe(recorder)

    runner.start(queue.snapshot(), BatchSettings())
    assert wait_for_file(marker)
    assert runner.start(queue.snapshot(), BatchSettings()) is StartResult.ALREADY_RUNNING
    assert runner.current_job == first

    assert runner.cancel() is True
    assert runner.cancel() is False
    assert runner.wait(timeout=10) is BatchState.CANCELLED

    assert recorder.names() == ["job_started", "job_failed", "batch_cancelled"]
    summary = recorder.summary()
    assert summary.cancelled
    assert summary.succeeded == ()
    assert summary.failed == ((first, CANCELLED_REASON),)
    assert summary.skipped == (second,)
    assert len(fake_ffmpeg.calls()) == 1
    assert runner.cursor == 1


def test_cancel_before_first_job_starts_nothing(runner, fake_ffmpeg, media_dir, monkeypatch):
    queue = JobQueue()
    queue.add_job(_video(media_dir, "a.mp4"))
    queue.add_job(_video(media_dir, "b.mp4"))
    recorder = EventRecorder()
    runner.subscribe(recorder)
    pending = []
    monkeypatch.setattr(runner, "_launch_worker", pending.append)

    assert runner.start(queue.snapshot(), BatchSettings()) is StartResult.OK
    assert runner.cancel() is True
    runner._work(pending[0])

    assert runner.state is BatchState.CANCELLED
    assert recorder.names() == ["batch_cancelled"]
    assert recorder.summary().skipped == queue.snapshot()
    assert fake_ffmpeg.calls() == []


def test_cancel_from_job_started_prevents_ffmpeg_launch(runner, fake_ffmpeg, media_dir):
    queue = JobQueue()
    first = queue.add_job(_video(media_dir, "a.mp4"))
    second = queue.add_job(_video(media_dir, "b.mp4"))
    recorder = EventRecorder()

    def cancel_on_start(event):
        if isinstance(event, JobStarted):
            runner.cancel()

    runner.subscribe(cancel_on_start)
    runner.subscribe(recorder)

    runner.start(queue.snapshot(), BatchSettings())

    assert runner.wait(timeout=10) is BatchState.CANCELLED
    assert recorder.names() == ["job_started", "job_failed", "batch_cancelled"]
    assert recorder.events[1].reason == CANCELLED_REASON
    summary = recorder.summary()
    assert summary.failed == ((first, CANCELLED_REASON),)
    assert summary.skipped == (second,)
    assert fake_ffmpeg.calls() == []


def test_cancel_when_idle_is_a_no_op(runner):
    assert runner.cancel() is False
    assert runner.state is BatchState.IDLE


def test_cursor_is_monotonic_and_bounded(runner, fake_ffmpeg, media_dir):
    queue = JobQueue()
    for name in ("1.mp4", "BROKEN.mkv", "3.webm"):
        queue.add_job(_video(media_dir, name))
    seen = []
    runner.subscribe(lambda event: seen.append((runner.cursor, runner.total)))

    runner.start(queue.snapshot(), BatchSettings())
    runner.wait(timeout=10)

    cursors = [cursor for cursor, _ in seen]
    assert cursors == sorted(cursors)
    assert all(0 <= cursor <= total for cursor, total in seen)
    assert cursors[-1] == 3


def test_failing_observer_does_not_disturb_the_run(runner, fake_ffmpeg, media_dir):
    queue = JobQueue()
    queue.add_job(_video(media_dir, "a.mp4"))

    def explode(_event):
        raise RuntimeError("observer bug")

    recorder = EventRecorder()
    runner.subscribe(explode)
    runner.subscribe(recorder)

    runner.start(queue.snapshot(), BatchSettings())

    assert runner.wait(timeout=10) is BatchState.COMPLETED
    assert recorder.names() == ["job_started", "job_succeeded", "batch_completed"]


def test_unsubscribe_and_restart_after_completion(runner, fake_ffmpeg, media_dir):
    queue = JobQueue()
    queue.add_job(_video(media_dir, "a.mp4"))
    recorder = EventRecorder()
    unsubscribe = runner.subscribe(recorder)

    runner.start(queue.snapshot(), BatchSettings())
    runner.wait(timeout=10)
    unsubscribe()
    assert runner.start(queue.snapshot(), BatchSettings()) is StartResult.OK
    assert runner.wait(timeout=10) is BatchState.COMPLETED

    assert recorder.names().count("batch_completed") == 1
    assert len(fake_ffmpeg.calls()) == 2


def test_run_log_records_commands(runner, fake_ffmpeg, media_dir, tmp_path):
    queue = JobQueue()
    queue.add_job(_video(media_dir, "a.mp4"))

    runner.start(queue.snapshot(), BatchSettings())
    runner.wait(timeout=10)

    latest = (tmp_path / "logs" / "nekosubs.log").read_text()
    assert "Command:" in latest
    assert "completed" in latest


def test_run_stays_running_until_terminal_event_is_delivered(runner, fake_ffmpeg, media_dir):
    queue = JobQueue()
    queue.add_job(_video(media_dir, "a.mp4"))
    entered = threading.Event()
    release = threading.Event()
    delivered = []

    def slow_terminal_observer(event):
        if isinstance(event, BatchCompleted):
            entered.set()
            release.wait(timeout=10)
            delivered.append(event)

    runner.subscribe(slow_terminal_observer)
    runner.start(queue.snapshot(), BatchSettings())
    assert entered.wait(timeout=10)
    try:
        assert runner.state is BatchState.RUNNING
        assert runner.worker_alive
        assert runner.wait(timeout=0.05) is BatchState.RUNNING
        assert runner.start(queue.snapshot(), BatchSettings()) is StartResult.ALREADY_RUNNING
    finally:
        release.set()

    assert runner.wait(timeout=10) is BatchState.COMPLETED
    assert len(delivered) == 1
    assert not runner.worker_alive
    assert len(fake_ffmpeg.calls()) == 1
