"""Job descriptors and the caller-owned merge queue."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from uuid import uuid4

from .config import DEFAULT_OUTPUT_SUFFIX, SUBTITLE_EXTENSIONS, VIDEO_EXTENSIONS
from .settings import BatchSettings
from .subtitles import match_subtitle


class UnsupportedVideoError(ValueError):
    """Raised when a file without a recognised video extension is queued."""


class UnsupportedSubtitleError(ValueError):
    """Raised when a subtitle without a ``.srt``/``.ass`` extension is assigned."""


def is_video_file(path: Path) -> bool:
    return Path(path).suffix.lower() in VIDEO_EXTENSIONS


@dataclass(frozen=True, slots=True)
class Job:
    """One queued video plus its optional burn-in subtitle."""

    video_path: Path
    subtitle_path: Optional[Path] = None
    job_id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def name(self) -> str:
        return self.video_path.name

    def output_path(self, settings: BatchSettings) -> Path:
        """Return where the merged file for this job is written."""

        folder = settings.output_directory or self.video_path.parent
        extension = settings.output_container.value
        return folder / f"{self.video_path.stem}{DEFAULT_OUTPUT_SUFFIX}.{extension}"


class JobQueue:
    """Ordered, editable list of jobs that a batch is started from."""

    def __init__(self, matcher: Callable[[Path], Optional[Path]] = match_subtitle) -> None:
        self._jobs: Dict[str, Job] = {}
        self._matcher = matcher

    def add_job(self, video_path: Path, *, auto_subtitle: bool = True) -> Job:
        """Queue ``video_path``, optionally pairing it with a sidecar subtitle."""

        path = Path(video_path).expanduser().resolve()
        if not is_video_file(path):
            raise UnsupportedVideoError(f"Not a supported video file: {path.name}")
        if not path.is_file():
            raise FileNotFoundError(f"Video not found: {path}")
        subtitle = self._matcher(path) if auto_subtitle else None
        job = Job(video_path=path, subtitle_path=subtitle)
        self._jobs[job.job_id] = job
        return job

    def add_jobs(
        self, paths: Iterable[Path], *, auto_subtitle: bool = True
    ) -> Tuple[List[Job], List[Tuple[Path, str]]]:
        """Queue every usable path; return ``(added, rejected)``."""

        added: List[Job] = []
        rejected: List[Tuple[Path, str]] = []
        for raw in paths:
            try:
                added.append(self.add_job(raw, auto_subtitle=auto_subtitle))
            except (UnsupportedVideoError, FileNotFoundError) as exc:
                rejected.append((Path(raw), str(exc)))
        return added, rejected

    def set_subtitle(self, job_id: str, subtitle_path: Optional[Path]) -> Job:
        """Assign (or clear, with ``None``) the subtitle burned into ``job_id``."""

        job = self._jobs[job_id]
        resolved: Optional[Path] = None
        if subtitle_path is not None:
            resolved = Path(subtitle_path).expanduser().resolve()
            if resolved.suffix.lower() not in SUBTITLE_EXTENSIONS:
                raise UnsupportedSubtitleError(f"Not a supported subtitle file: {resolved.name}")
        updated = replace(job, subtitle_path=resolved)
        self._jobs[job_id] = updated
        return updated

    def remove_job(self, job_id: str) -> Job:
        return self._jobs.pop(job_id)

    def get(self, job_id: str) -> Job:
        return self._jobs[job_id]

    def snapshot(self) -> Tuple[Job, ...]:
        """Return the queued jobs in order, detached from later edits."""

        return tuple(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(self.snapshot())


__all__ = [
    "Job",
    "JobQueue",
    "UnsupportedSubtitleError",
    "UnsupportedVideoError",
    "is_video_file",
]
