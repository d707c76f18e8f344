"""Batch subtitle burn-in for video files, driven by FFmpeg."""

from .events import BatchSummary, ConsoleReporter, EventRecorder
from .ffmpeg import FFmpegTooling, JobBuildError, MergeCommand, ToolNotFound
from .jobs import Job, JobQueue
from .runner import BatchRunner, BatchState, StartResult
from .settings import BatchSettings, CompressionLevel, OutputContainer, load_settings
from .subtitles import match_subtitle

__version__ = "1.0.0"

__all__ = [
    "BatchRunner",
    "BatchSettings",
    "BatchState",
    "BatchSummary",
    "CompressionLevel",
    "ConsoleReporter",
    "EventRecorder",
    "FFmpegTooling",
    "Job",
    "JobBuildError",
    "JobQueue",
    "MergeCommand",
    "OutputContainer",
    "StartResult",
    "ToolNotFound",
    "load_settings",
    "match_subtitle",
]
