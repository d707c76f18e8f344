"""FFmpeg command construction for subtitle burn-in merges."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config import VIDEO_ENCODER
from .jobs import Job
from .settings import BatchSettings, CompressionLevel

# Lower CRF keeps more detail at the cost of a larger file.
CRF_BY_LEVEL: Dict[CompressionLevel, int] = {
    CompressionLevel.FAST: 18,
    CompressionLevel.MEDIUM: 23,
    CompressionLevel.SLOW: 28,
}


class FFmpegError(RuntimeError):
    """Base class for failures preparing an FFmpeg invocation."""


class ToolNotFound(FFmpegError):
    """Raised when the FFmpeg executable cannot be located."""


class JobBuildError(FFmpegError):
    """Raised when a job cannot be turned into a command."""


@dataclass(frozen=True, slots=True)
class MergeCommand:
    """A fully resolved FFmpeg invocation for one job."""

    executable: str
    arguments: Tuple[str, ...]
    output_path: Path

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.arguments]

    def __str__(self) -> str:
        return " ".join(self.argv)


def _backslash_escape(text: str, specials: str) -> str:
    return "".join("\\" + char if char in specials else char for char in text)


def escape_subtitles_filter_path(path: Path) -> str:
    """Escape ``path`` for use as the unquoted ``subtitles=`` filename.

    FFmpeg unescapes the value twice: once while splitting the filtergraph
    and once while parsing the filter's options, so each level gets its own
    pass, innermost first.
    """

    option_value = _backslash_escape(path.as_posix(), "\\':")
    return _backslash_escape(option_value, "\\'[],;")


class FFmpegTooling:
    """Resolves the FFmpeg binary and builds merge commands for it."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg") -> None:
        self.ffmpeg_bin = ffmpeg_bin

    def find_ffmpeg(self) -> Optional[str]:
        """Return the absolute FFmpeg path, or ``None`` when it is missing."""

        candidate = Path(self.ffmpeg_bin).expanduser()
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate.resolve())
        return shutil.which(self.ffmpeg_bin)

    def require_ffmpeg(self) -> str:
        resolved = self.find_ffmpeg()
        if not resolved:
            raise ToolNotFound(f"FFmpeg executable not found: {self.ffmpeg_bin}")
        return resolved

    def build_merge_command(self, job: Job, settings: BatchSettings) -> MergeCommand:
        """Translate ``job`` and ``settings`` into an FFmpeg argument list.

        FFmpeg is order sensitive, so the layout is fixed: input, optional
        subtitle burn-in filter, audio copy, video encoder with the CRF picked
        by ``settings.compression_level``, then the output path.
        """

        executable = self.require_ffmpeg()
        if not job.video_path.exists():
            raise JobBuildError(f"Video not found: {job.video_path}")

        arguments: List[str] = ["-y" if settings.overwrite else "-n", "-i", str(job.video_path)]
        if job.subtitle_path is not None:
            if not job.subtitle_path.exists():
                raise JobBuildError(f"Subtitle not found: {job.subtitle_path}")
            subtitles_arg = escape_subtitles_filter_path(job.subtitle_path)
            arguments += ["-vf", f"subtitles={subtitles_arg}:charenc=UTF-8"]
        arguments += ["-c:a", "copy"]
        crf = CRF_BY_LEVEL[settings.compression_level]
        arguments += ["-c:v", VIDEO_ENCODER, "-crf", str(crf)]

        output_path = job.output_path(settings)
        arguments.append(str(output_path))
        return MergeCommand(executable=executable, arguments=tuple(arguments), output_path=output_path)


__all__ = [
    "CRF_BY_LEVEL",
    "FFmpegError",
    "FFmpegTooling",
    "JobBuildError",
    "MergeCommand",
    "ToolNotFound",
    "escape_subtitles_filter_path",
]
