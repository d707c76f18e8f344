"""Sequential batch runner that supervises one FFmpeg process at a time."""

from __future__ import annotations

import os
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Deque, List, Optional, Sequence, Tuple

from rich.markup import escape

from .events import (
    BatchCancelled,
    BatchCompleted,
    BatchEvent,
    BatchObserver,
    BatchSummary,
    JobFailed,
    JobStarted,
    JobSucceeded,
)
from .ffmpeg import FFmpegError, FFmpegTooling
from .jobs import Job
from .logging import RunLogger, get_console
from .settings import BatchSettings

STDERR_TAIL_LINES = 20
CANCELLED_REASON = "Cancelled by user"


class BatchState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StartResult(str, Enum):
    OK = "ok"
    ALREADY_RUNNING = "already_running"
    EMPTY_QUEUE = "empty_queue"


@dataclass
class _BatchRun:
    """State owned by a single invocation of :meth:`BatchRunner.start`."""

    jobs: Tuple[Job, ...]
    settings: BatchSettings
    executable: str
    logger: RunLogger
    cursor: int = 0
    cancel_event: threading.Event = field(default_factory=threading.Event)
    lock: threading.Lock = field(default_factory=threading.Lock)
    active_process: Optional[subprocess.Popen] = None
    current_job: Optional[Job] = None
    succeeded: List[Job] = field(default_factory=list)
    failed: List[Tuple[Job, str]] = field(default_factory=list)

    def summary(self) -> BatchSummary:
        return BatchSummary(
            succeeded=tuple(self.succeeded),
            failed=tuple(self.failed),
            skipped=self.jobs[self.cursor :],
            cancelled=self.cancel_event.is_set(),
        )


def _popen_kwargs() -> dict[str, object]:
    kwargs: dict[str, object] = {}
    if os.name == "nt":
        # Create a new process group so console Ctrl+C is not forwarded to FFmpeg
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
    else:
        # POSIX: start a new session safely (thread-friendly)
        kwargs["start_new_session"] = True
    return kwargs


class BatchRunner:
    """Runs a snapshot of jobs through FFmpeg on a dedicated worker thread.

    ``start`` returns immediately; progress is published to subscribed
    observers from the worker thread. ``cancel`` may be called from any thread
    and terminates the FFmpeg process that is currently running.
    """

    def __init__(
        self,
        tooling: Optional[FFmpegTooling] = None,
        *,
        log_dir: Optional[Path] = None,
        kill_timeout: float = 2.0,
    ) -> None:
        self.tooling = tooling or FFmpegTooling()
        self.log_dir = log_dir
        self.kill_timeout = kill_timeout
        self.console = get_console()
        self._observers: List[BatchObserver] = []
        self._state = BatchState.IDLE
        self._state_lock = threading.Lock()
        self._run: Optional[_BatchRun] = None
        self._thread: Optional[threading.Thread] = None

    # ---- observers ---------------------------------------------------------------
    def subscribe(self, observer: BatchObserver) -> Callable[[], None]:
        """Register ``observer``; the returned callable unsubscribes it."""

        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _emit(self, event: BatchEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as exc:
                self.console.log(
                    f"[bold red]Observer error[/bold red] {escape(repr(observer))}: {escape(str(exc))}"
                )

    # ---- queries -----------------------------------------------------------------
    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is BatchState.RUNNING

    @property
    def worker_alive(self) -> bool:
        """True while the worker thread, including terminal event delivery, is still going."""

        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def cursor(self) -> int:
        return self._run.cursor if self._run else 0

    @property
    def total(self) -> int:
        return len(self._run.jobs) if self._run else 0

    @property
    def progress(self) -> float:
        total = self.total
        return self.cursor / total if total else 0.0

    @property
    def current_job(self) -> Optional[Job]:
        return self._run.current_job if self._run else None

    # ---- commands ----------------------------------------------------------------
    def start(self, jobs: Sequence[Job], settings: BatchSettings) -> StartResult:
        """Begin processing ``jobs`` in order with ``settings``.

        Raises :class:`~nekosubs.ffmpeg.ToolNotFound` before any work starts
        when FFmpeg is missing.
        """

        with self._state_lock:
            if self._state is BatchState.RUNNING:
                return StartResult.ALREADY_RUNNING
            snapshot = tuple(jobs)
            if not snapshot:
                return StartResult.EMPTY_QUEUE
            executable = self.tooling.require_ffmpeg()
            run = _BatchRun(
                jobs=snapshot,
                settings=settings,
                executable=executable,
                logger=RunLogger.start(self.log_dir),
            )
            self._run = run
            self._state = BatchState.RUNNING
        self._launch_worker(run)
        return StartResult.OK

    def cancel(self) -> bool:
        """Request cancellation; returns ``True`` only for the first effective call."""

        run = self._run
        if run is None or self._state is not BatchState.RUNNING or run.cancel_event.is_set():
            return False
        with run.lock:
            run.cancel_event.set()
            process = run.active_process
            if process is not None and process.poll() is None:
                process.terminate()
                timer = threading.Timer(self.kill_timeout, self._kill_if_alive, args=(process,))
                timer.daemon = True
                timer.start()
        return True

    def wait(self, timeout: Optional[float] = None) -> BatchState:
        """Block until the worker finishes or ``timeout`` elapses."""

        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self._state

    # ---- worker ------------------------------------------------------------------
    def _launch_worker(self, run: _BatchRun) -> None:
        self._thread = threading.Thread(target=self._work, args=(run,), name="nekosubs-batch", daemon=True)
        self._thread.start()

    def _work(self, run: _BatchRun) -> None:
        final_state = BatchState.COMPLETED
        try:
            with run.logger as run_logger:
                run_logger.log(f"Batch of {len(run.jobs)} job(s) using {run.executable}")
                run_logger.log(
                    f"Container: {run.settings.output_container.value}, "
                    f"compression: {run.settings.compression_level.value}, "
                    f"output dir: {run.settings.output_directory or 'beside source'}"
                )
                try:
                    for index, job in enumerate(run.jobs):
                        if run.cancel_event.is_set():
                            break
                        run.current_job = job
                        with run_logger.step(f"Job {index + 1}/{len(run.jobs)} {job.video_path}"):
                            self._run_job(run, index, job, run_logger)
                finally:
                    run.current_job = None
                    summary = run.summary()
                    if summary.cancelled:
                        final_state = BatchState.CANCELLED
                        run_logger.mark_cancelled(CANCELLED_REASON)
                    run_logger.set_detail(
                        f"{len(summary.succeeded)} succeeded, {len(summary.failed)} failed, "
                        f"{len(summary.skipped)} skipped"
                    )
                    # The run stays RUNNING until every observer has seen the terminal event.
                    if summary.cancelled:
                        self._emit(BatchCancelled(summary))
                    else:
                        self._emit(BatchCompleted(summary))
        finally:
            self._set_state(final_state)

    def _set_state(self, state: BatchState) -> None:
        with self._state_lock:
            self._state = state

    def _run_job(self, run: _BatchRun, index: int, job: Job, run_logger: RunLogger) -> None:
        total = len(run.jobs)
        self._emit(JobStarted(index, total, job))

        try:
            command = self.tooling.build_merge_command(job, run.settings)
        except FFmpegError as exc:
            run_logger.log(f"Build failed: {exc}")
            self._finish_job(run, index, job, None, str(exc))
            return

        run_logger.log(f"Command: {command}")
        try:
            command.output_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._finish_job(run, index, job, None, f"Cannot create output directory: {exc}")
            return

        process: Optional[subprocess.Popen] = None
        launch_error: Optional[str] = None
        # Launch under the lock so cancel() either sees the new handle or
        # prevents the launch entirely.
        with run.lock:
            if run.cancel_event.is_set():
                launch_error = CANCELLED_REASON
            else:
                try:
                    process = subprocess.Popen(
                        command.argv,
                        stdin=subprocess.DEVNULL,
                        stdout=subprocess.DEVNULL,
                        stderr=subprocess.PIPE,
                        text=True,
                        encoding="utf-8",
                        errors="replace",
                        **_popen_kwargs(),
                    )
                except OSError as exc:
                    launch_error = f"Could not start FFmpeg: {exc}"
                run.active_process = process
        if process is None:
            run_logger.log(f"Not launched: {launch_error}")
            self._finish_job(run, index, job, None, launch_error)
            return

        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        def _pump() -> None:
            stream = process.stderr
            if stream is None:
                return
            for line in iter(stream.readline, ""):
                text = line.rstrip("\r\n")
                if text:
                    stderr_tail.append(text)
                    run_logger.log(f"ffmpeg: {text}")

        pump = threading.Thread(target=_pump, name="nekosubs-stderr", daemon=True)
        pump.start()
        try:
            return_code = process.wait()
        finally:
            pump.join()
            if process.stderr is not None:
                process.stderr.close()
            with run.lock:
                run.active_process = None

        run_logger.log(f"Exit code: {return_code}")
        if return_code == 0:
            self._finish_job(run, index, job, command.output_path, None)
        elif run.cancel_event.is_set():
            self._finish_job(run, index, job, None, CANCELLED_REASON)
        else:
            detail = f"FFmpeg exited with code {return_code}"
            if stderr_tail:
                detail = f"{detail}: {stderr_tail[-1]}"
            self._finish_job(run, index, job, None, detail)

    def _finish_job(
        self,
        run: _BatchRun,
        index: int,
        job: Job,
        output_path: Optional[Path],
        reason: Optional[str],
    ) -> None:
        # The cursor counts attempted jobs, successful or not.
        run.cursor = index + 1
        total = len(run.jobs)
        if reason is None and output_path is not None:
            run.succeeded.append(job)
            self._emit(JobSucceeded(index, total, job, output_path))
        else:
            message = reason or "unknown failure"
            run.failed.append((job, message))
            self._emit(JobFailed(index, total, job, message))

    def _kill_if_alive(self, process: subprocess.Popen) -> None:
        if process.poll() is None:
            process.kill()


__all__ = ["BatchRunner", "BatchState", "StartResult"]
