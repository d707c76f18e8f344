"""Console and file logging helpers built on top of Rich."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from time import monotonic
from typing import Iterator, Optional
from uuid import uuid4

from rich.console import Console

from .config import LOGS_DIR

_console = Console()

LATEST_LOG_NAME = "nekosubs.log"


def get_console() -> Console:
    """Return the shared :class:`~rich.console.Console` instance."""

    return _console


@contextmanager
def status(message: str) -> Iterator[None]:
    """Show a transient status spinner when running slow operations."""

    with _console.status(message, spinner="dots"):
        yield


def cleanup_old_logs(log_dir: Path = LOGS_DIR, max_age_hours: int = 24) -> None:
    """Remove ``*.log`` files in ``log_dir`` older than ``max_age_hours``."""

    if not log_dir.exists():
        return

    cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
    for candidate in log_dir.glob("*.log"):
        if candidate.name == LATEST_LOG_NAME:
            # Recreated on every run and handled separately.
            continue
        try:
            modified = datetime.fromtimestamp(candidate.stat().st_mtime, tz=timezone.utc)
        except OSError:
            continue
        if modified < cutoff:
            try:
                candidate.unlink()
            except OSError:
                continue


@dataclass(slots=True)
class _TimedStep:
    """Context manager recording the duration of a logging step."""

    logger: "RunLogger"
    label: str
    _start: float = 0.0

    def __enter__(self) -> None:
        self.logger.log(f"START {self.label}")
        self._start = monotonic()

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        duration = monotonic() - self._start
        if exc_type:
            self.logger.log(f"ERROR in {self.label}: {exc}")
        self.logger.log(f"END {self.label} – {duration:.2f}s")


class RunLogger:
    """Per-batch log file with timestamps, steps and a closing summary.

    Lines are written both to ``<run_id>.log`` and to the rolling
    ``nekosubs.log`` in the same directory. Writes are serialised because the
    stderr pump threads log concurrently with the batch worker.
    """

    def __init__(self, run_id: str, log_dir: Path) -> None:
        self.run_id = run_id
        self.path = log_dir / f"{run_id}.log"
        log_dir.mkdir(parents=True, exist_ok=True)
        cleanup_old_logs(log_dir)
        self._lock = Lock()
        self._handle = self.path.open("w", encoding="utf8")
        self._latest_handle = (log_dir / LATEST_LOG_NAME).open("w", encoding="utf8")
        now = datetime.now(timezone.utc)
        self._log(f"Run {run_id} started at {now.isoformat()}")
        self._start = monotonic()
        self._status: str = "completed"
        self._detail: Optional[str] = None

    @classmethod
    def start(cls, log_dir: Optional[Path] = None) -> "RunLogger":
        """Create a :class:`RunLogger` bound to a new UUID."""

        return cls(uuid4().hex, log_dir or LOGS_DIR)

    def _log(self, message: str) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        line = f"[{timestamp}] {message}\n"
        with self._lock:
            if self._handle.closed:
                return
            self._handle.write(line)
            self._handle.flush()
            self._latest_handle.write(line)
            self._latest_handle.flush()

    def log(self, message: str) -> None:
        """Record ``message`` with the current timestamp."""

        self._log(message)

    def log_error(self, message: str) -> None:
        """Record an error message and mark the run as failed."""

        self._status = "failed"
        self._detail = message
        self._log(f"ERROR: {message}")

    def mark_cancelled(self, reason: str) -> None:
        """Mark the run as cancelled with ``reason``."""

        self._status = "cancelled"
        self._detail = reason
        self._log(f"CANCELLED: {reason}")

    def set_detail(self, detail: str) -> None:
        self._detail = detail

    def step(self, label: str) -> _TimedStep:
        """Return a context manager recording the duration of ``label``."""

        return _TimedStep(self, label)

    def close(self) -> None:
        """Finalize the log with the run summary."""

        total = monotonic() - self._start
        detail = f" ({self._detail})" if self._detail else ""
        self._log(f"Run {self.run_id} {self._status} in {total:.2f}s{detail}")
        with self._lock:
            self._handle.close()
            self._latest_handle.close()

    def __enter__(self) -> "RunLogger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        if exc_type:
            self.log_error(str(exc))
        self.close()


__all__ = [
    "RunLogger",
    "cleanup_old_logs",
    "get_console",
    "status",
]
