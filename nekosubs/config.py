"""Static configuration and default paths used by nekosubs."""

from __future__ import annotations

from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parent
LOGS_DIR = Path.home() / ".nekosubs" / "logs"
VIDEO_EXTENSIONS = frozenset({".mp4", ".mkv", ".avi", ".mov", ".flv", ".webm"})
SUBTITLE_EXTENSIONS = frozenset({".srt", ".ass"})
DEFAULT_OUTPUT_SUFFIX = "_merged"
VIDEO_ENCODER = "libx264"
