from __future__ import annotations

import os
import stat
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from nekosubs.ffmpeg import FFmpegTooling

# Stand-in for FFmpeg: records its arguments, creates the output file and
# fails for inputs named BROKEN. With FAKE_FFMPEG_HANG set it touches that
# marker file and sleeps until terminated.
FAKE_FFMPEG = """#!/bin/sh
printf '%s\\n' "$*" >> "$FAKE_FFMPEG_LOG"
for last; do :; done
case "$*" in
  *BROKEN*)
    echo "BROKEN: Invalid data found when processing input" >&2
    exit 1
    ;;
esac
if [ -n "$FAKE_FFMPEG_HANG" ]; then
  : > "$FAKE_FFMPEG_HANG"
  exec sleep 30
fi
: > "$last"
exit 0
"""


@pytest.fixture
def fake_ffmpeg(tmp_path, monkeypatch):
    if os.name == "nt":
        pytest.skip("fake FFmpeg is a POSIX shell script")
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "ffmpeg"
    script.write_text(FAKE_FFMPEG)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    log = tmp_path / "ffmpeg_calls.log"
    monkeypatch.setenv("FAKE_FFMPEG_LOG", str(log))
    monkeypatch.delenv("FAKE_FFMPEG_HANG", raising=False)

    def calls() -> list[str]:
        return log.read_text().splitlines() if log.exists() else []

    return SimpleNamespace(path=script, log=log, calls=calls)


@pytest.fixture
def tooling(fake_ffmpeg) -> FFmpegTooling:
    return FFmpegTooling(str(fake_ffmpeg.path))


@pytest.fixture
def media_dir(tmp_path) -> Path:
    folder = tmp_path / "media"
    folder.mkdir()
    return folder


@pytest.fixture
def wait_for_file():
    def _wait(path: Path, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if path.exists():
                return True
            time.sleep(0.02)
        return False

    return _wait
