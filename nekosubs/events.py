"""Progress and result events published by the batch runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Callable, List, Optional, Tuple, Union

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .jobs import Job
from .logging import get_console


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Which jobs of a finished batch succeeded, failed or never ran."""

    succeeded: Tuple[Job, ...] = ()
    failed: Tuple[Tuple[Job, str], ...] = ()
    skipped: Tuple[Job, ...] = ()
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.skipped)


@dataclass(frozen=True, slots=True)
class JobStarted:
    index: int
    total: int
    job: Job


@dataclass(frozen=True, slots=True)
class JobSucceeded:
    index: int
    total: int
    job: Job
    output_path: Path


@dataclass(frozen=True, slots=True)
class JobFailed:
    index: int
    total: int
    job: Job
    reason: str


@dataclass(frozen=True, slots=True)
class BatchCompleted:
    summary: BatchSummary


@dataclass(frozen=True, slots=True)
class BatchCancelled:
    summary: BatchSummary


BatchEvent = Union[JobStarted, JobSucceeded, JobFailed, BatchCompleted, BatchCancelled]
BatchObserver = Callable[[BatchEvent], None]

_EVENT_NAMES = {
    JobStarted: "job_started",
    JobSucceeded: "job_succeeded",
    JobFailed: "job_failed",
    BatchCompleted: "batch_completed",
    BatchCancelled: "batch_cancelled",
}


def event_name(event: BatchEvent) -> str:
    return _EVENT_NAMES[type(event)]


class EventRecorder:
    """Observer that keeps every event it receives, in arrival order."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._events: List[BatchEvent] = []

    def __call__(self, event: BatchEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[BatchEvent]:
        with self._lock:
            return list(self._events)

    def names(self) -> List[str]:
        return [event_name(event) for event in self.events]

    def summary(self) -> Optional[BatchSummary]:
        """Return the summary carried by the terminal event, if one arrived."""

        for event in reversed(self.events):
            if isinstance(event, (BatchCompleted, BatchCancelled)):
                return event.summary
        return None


@dataclass
class ConsoleReporter:
    """Observer that renders batch progress on a Rich console."""

    console: Console = field(default_factory=get_console)

    def __call__(self, event: BatchEvent) -> None:
        if isinstance(event, JobStarted):
            subtitle = event.job.subtitle_path.name if event.job.subtitle_path else "no subtitles"
            self.console.log(
                f"[cyan]{event.index + 1}/{event.total}[/cyan] Merging {escape(event.job.name)} ({escape(subtitle)})"
            )
        elif isinstance(event, JobSucceeded):
            self.console.log(f"[green]Done[/green] {escape(str(event.output_path))}")
        elif isinstance(event, JobFailed):
            self.console.log(f"[bold red]Failed[/bold red] {escape(event.job.name)}: {escape(event.reason)}")
        elif isinstance(event, BatchCancelled):
            self.console.log("[yellow]Batch cancelled[/yellow]")
            self.show_summary(event.summary)
        elif isinstance(event, BatchCompleted):
            self.console.log("[green]Batch completed[/green]")
            self.show_summary(event.summary)

    def show_summary(self, summary: BatchSummary) -> None:
        table = Table(title="nekosubs summary", show_header=True, header_style="bold magenta")
        table.add_column("Video", style="cyan")
        table.add_column("Result")
        for job in summary.succeeded:
            table.add_row(escape(job.name), "[green]merged[/green]")
        for job, reason in summary.failed:
            table.add_row(escape(job.name), f"[red]{escape(reason)}[/red]")
        for job in summary.skipped:
            table.add_row(escape(job.name), "[yellow]skipped[/yellow]")
        self.console.print(table)


__all__ = [
    "BatchCancelled",
    "BatchCompleted",
    "BatchEvent",
    "BatchObserver",
    "BatchSummary",
    "ConsoleReporter",
    "EventRecorder",
    "JobFailed",
    "JobStarted",
    "JobSucceeded",
    "event_name",
]
