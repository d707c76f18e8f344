"""Typer CLI entry point exposing the nekosubs commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.markup import escape

from .events import (
    BatchCancelled,
    BatchCompleted,
    BatchEvent,
    ConsoleReporter,
    EventRecorder,
    JobFailed,
    JobStarted,
    JobSucceeded,
    event_name,
)
from .ffmpeg import FFmpegTooling, ToolNotFound
from .jobs import JobQueue, UnsupportedSubtitleError
from .logging import get_console, status
from .runner import BatchRunner, BatchState, StartResult
from .settings import CompressionLevel, OutputContainer, load_settings
from .subtitles import match_subtitle

app = typer.Typer(add_completion=False, help="Burn subtitles into videos in batches with FFmpeg")
console = get_console()

EXIT_FAILURES = 1
EXIT_NO_INPUT = 2
EXIT_TOOL_NOT_FOUND = 127
EXIT_CANCELLED = 130


def _emit_json_event(event: BatchEvent) -> None:
    """Emit a single JSON event line to stdout for machine consumers."""

    payload: dict = {"event": event_name(event)}
    if isinstance(event, (JobStarted, JobSucceeded, JobFailed)):
        payload.update({"index": event.index, "total": event.total, "file": str(event.job.video_path)})
    if isinstance(event, JobSucceeded):
        payload["path"] = str(event.output_path)
    elif isinstance(event, JobFailed):
        payload["error"] = event.reason
    elif isinstance(event, (BatchCompleted, BatchCancelled)):
        payload["succeeded"] = len(event.summary.succeeded)
        payload["failed"] = len(event.summary.failed)
        payload["skipped"] = len(event.summary.skipped)
    typer.echo(json.dumps(payload, ensure_ascii=False))


def _wait_for(runner: BatchRunner) -> None:
    while runner.worker_alive:
        runner.wait(timeout=0.2)


@app.command()
def merge(
    videos: List[Path] = typer.Argument(..., help="Video files to queue, processed in order"),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", "-o", file_okay=False, help="Write merged files here instead of beside each video"
    ),
    container: Optional[OutputContainer] = typer.Option(
        None, "--format", "-f", case_sensitive=False, help="Output container"
    ),
    compression: Optional[CompressionLevel] = typer.Option(
        None, "--compression", "-c", case_sensitive=False, help="fast = best quality, slow = smallest file"
    ),
    subtitle: Optional[Path] = typer.Option(
        None, "--subtitle", "-s", exists=True, dir_okay=False, help="Subtitle to burn in (single video only)"
    ),
    auto_subtitles: Optional[bool] = typer.Option(
        None, "--auto-subtitles/--no-auto-subtitles", help="Pair each video with a same-named .srt/.ass"
    ),
    ffmpeg: Optional[str] = typer.Option(None, "--ffmpeg", help="FFmpeg executable name or path"),
    config: Optional[Path] = typer.Option(None, "--config", exists=True, dir_okay=False, help="YAML config file"),
    json_events: bool = typer.Option(False, "--json", help="Also print one JSON line per batch event"),
) -> None:
    """Merge every queued video with its subtitle, one FFmpeg run at a time."""

    settings = load_settings(config)
    if ffmpeg:
        settings.ffmpeg.binary = ffmpeg
    if subtitle is not None and len(videos) > 1:
        console.log("[bold red]--subtitle can only be used with a single video[/bold red]")
        raise typer.Exit(code=EXIT_NO_INPUT)

    auto = settings.merge.auto_match_subtitles if auto_subtitles is None else auto_subtitles
    queue = JobQueue()
    added, rejected = queue.add_jobs(videos, auto_subtitle=auto)
    for path, reason in rejected:
        console.log(f"[yellow]Skipping[/yellow] {escape(str(path))} – {escape(reason)}")
    if not added:
        console.log("[bold red]No video files to merge[/bold red]")
        raise typer.Exit(code=EXIT_NO_INPUT)
    if subtitle is not None:
        try:
            queue.set_subtitle(added[0].job_id, subtitle)
        except UnsupportedSubtitleError as exc:
            console.log(f"[bold red]{escape(str(exc))}[/bold red]")
            raise typer.Exit(code=EXIT_NO_INPUT)

    batch = settings.batch_settings(
        output_directory=output_dir,
        container=container.value if container else None,
        compression=compression.value if compression else None,
    )
    runner = BatchRunner(
        FFmpegTooling(settings.ffmpeg.binary),
        log_dir=settings.paths.log_dir,
        kill_timeout=settings.ffmpeg.kill_timeout,
    )
    recorder = EventRecorder()
    runner.subscribe(recorder)
    runner.subscribe(ConsoleReporter(console))
    if json_events:
        runner.subscribe(_emit_json_event)

    try:
        result = runner.start(queue.snapshot(), batch)
    except ToolNotFound as exc:
        console.log(f"[bold red]{escape(str(exc))}[/bold red]")
        raise typer.Exit(code=EXIT_TOOL_NOT_FOUND)
    if result is not StartResult.OK:
        raise typer.Exit(code=EXIT_NO_INPUT)

    try:
        with status(f"Merging {len(queue)} video(s) with FFmpeg"):
            _wait_for(runner)
    except KeyboardInterrupt:
        console.log("[yellow]Cancelling batch…[/yellow]")
        runner.cancel()
        runner.wait()

    summary = recorder.summary()
    if runner.state is BatchState.CANCELLED:
        raise typer.Exit(code=EXIT_CANCELLED)
    if summary is None or summary.failed:
        raise typer.Exit(code=EXIT_FAILURES)


@app.command()
def match(
    video: Path = typer.Argument(..., exists=True, dir_okay=False, help="Video to find a subtitle for"),
) -> None:
    """Print the subtitle that would be paired with VIDEO automatically."""

    subtitle = match_subtitle(video.resolve())
    if subtitle is None:
        console.log(f"[yellow]No subtitle found for[/yellow] {escape(video.name)}")
        raise typer.Exit(code=1)
    typer.echo(str(subtitle))


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


__all__ = ["app"]
