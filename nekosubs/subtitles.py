"""Locate subtitle files that sit next to a video and share its base name."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from rich.markup import escape

from .config import SUBTITLE_EXTENSIONS
from .logging import get_console


def find_subtitles(video_path: Path) -> List[Path]:
    """Return every sidecar subtitle for ``video_path``, sorted by file name.

    A candidate lives in the same directory, starts with the video's stem and
    carries a ``.srt`` or ``.ass`` suffix. Unreadable directories yield an
    empty list.
    """

    video_path = Path(video_path)
    base_name = video_path.stem
    try:
        entries = list(video_path.parent.iterdir())
    except OSError as exc:
        get_console().log(f"[dim]Subtitle lookup skipped for {escape(video_path.name)}: {escape(str(exc))}[/dim]")
        return []

    matches = []
    for entry in entries:
        if not entry.name.startswith(base_name):
            continue
        if entry.suffix.lower() not in SUBTITLE_EXTENSIONS:
            continue
        try:
            if not entry.is_file():
                continue
        except OSError:
            continue
        matches.append(entry)
    return sorted(matches, key=lambda item: item.name)


def match_subtitle(video_path: Path) -> Optional[Path]:
    """Return the first matching subtitle for ``video_path`` or ``None``."""

    matches = find_subtitles(video_path)
    return matches[0] if matches else None


__all__ = ["find_subtitles", "match_subtitle"]
