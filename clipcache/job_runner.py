"""External job execution shared by transcoding and frame extraction.

Each job is one ffmpeg process, spawned without blocking the caller and
watched by its own supervising thread:

    start() ──spawn──▶ RUNNING ──poll every interval──▶ exit
                          │                             │
                          ├─ elapsed > timeout ─▶ TIMED_OUT (killed)
                          ├─ cancel() ─────────▶ CANCELLED (killed)
                          ▼
              exit 0 + output present ─▶ SUCCEEDED, otherwise FAILED

Completion is reported through a ``concurrent.futures.Future`` on the
JobHandle. A second start() for the same (source, kind) while a job is
active returns the existing handle instead of spawning again.
"""

import subprocess
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, List, Optional

from clipcache.errors import ErrorKind, ToolUnavailable
from clipcache.models.domain import ConversionJob, JobKind, JobStatus, MediaSource
from clipcache.repositories.job_repository import JobRepository
from clipcache.subprocess_utils import ProgressTracker
from clipcache.utils.platform import find_tool

ProgressCallback = Callable[[float], None]


class JobHandle:
    """Caller-side view of one ConversionJob.

    Every caller attached to the same job shares this object, so all of
    them observe the same terminal outcome.
    """

    def __init__(self, job: ConversionJob, source: MediaSource):
        self.job = job
        self.source = source
        self.future: Future = Future()
        self.lock = threading.RLock()
        self.cancel_event = threading.Event()
        self._progress_listeners: List[ProgressCallback] = []

    @property
    def key(self) -> tuple:
        return self.job.key

    @property
    def status(self) -> JobStatus:
        return self.job.status

    @property
    def progress(self) -> float:
        return self.job.progress

    def done(self) -> bool:
        return self.future.done()

    def wait(self, timeout: Optional[float] = None) -> ConversionJob:
        """Block until the job is terminal and return it."""
        return self.future.result(timeout=timeout)

    def add_progress_listener(self, callback: ProgressCallback) -> None:
        with self.lock:
            self._progress_listeners.append(callback)

    def add_done_callback(self, callback: Callable[[ConversionJob], None]) -> None:
        """Run ``callback(job)`` once terminal (immediately if already terminal)."""
        self.future.add_done_callback(lambda f: callback(f.result()))

    def report_progress(self, percent: float) -> None:
        with self.lock:
            before = self.job.progress
            after = self.job.update_progress(percent)
            listeners = list(self._progress_listeners) if after > before else []
        for callback in listeners:
            try:
                callback(after)
            except Exception as e:
                print(f"    Progress listener error: {e}")


class JobRunner(ABC):
    """Spawns and supervises ffmpeg jobs of one kind.

    Subclasses provide the command line, the success check for their
    output and the cleanup of partial output.
    """

    kind: JobKind = JobKind.STANDARD_TRANSCODE
    tool_name: str = "ffmpeg"
    description: str = "Job"

    def __init__(
        self,
        job_repo: JobRepository,
        timeout: float,
        expected_seconds: float,
        poll_interval: float = 0.5,
        tool_path: Optional[str] = None,
        tools_dir: Optional[Path] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        """Initialize the runner.

        Args:
            job_repo: Shared registry enforcing one active job per key
            timeout: Seconds before a running job is killed
            expected_seconds: Typical run time, drives progress estimates
            poll_interval: Seconds between liveness polls
            tool_path: Explicit ffmpeg executable (skips discovery)
            tools_dir: Sandboxed tools directory searched first
            popen: Process factory (tests inject fakes)
        """
        self.job_repo = job_repo
        self.timeout = timeout
        self.expected_seconds = expected_seconds
        self.poll_interval = poll_interval
        self.tool_path = tool_path
        self.tools_dir = tools_dir
        self.popen = popen

    # ── subclass hooks ─────────────────────────────────────────────────────
    @abstractmethod
    def build_command(self, tool: str, job: ConversionJob, source: MediaSource) -> List[str]:
        """Full argument list for one job."""
        pass

    def prepare_target(self, job: ConversionJob) -> None:
        """Create/clean the target location before spawning."""

    def output_ready(self, job: ConversionJob) -> bool:
        return job.target_path.exists()

    def on_success(self, handle: JobHandle) -> None:
        """Runs after a verified success, before the future resolves."""

    def discard_output(self, job: ConversionJob) -> None:
        """Remove partial output after a non-success terminal status."""

    def total_seconds(self, source: MediaSource) -> Optional[float]:
        return source.duration

    def output_frame_rate(self, source: MediaSource) -> Optional[float]:
        return source.frame_rate

    # ── public API ─────────────────────────────────────────────────────────
    def resolve_tool(self) -> str:
        """Locate the ffmpeg executable.

        Raises:
            ToolUnavailable: If no executable can be found
        """
        if self.tool_path:
            return self.tool_path
        found = find_tool(self.tool_name, self.tools_dir)
        if not found:
            raise ToolUnavailable(f"{self.tool_name} not found on this system")
        return str(found)

    def active_handle(self, source_path: Path) -> Optional[JobHandle]:
        """The in-flight handle for a source, if any."""
        handle = self.job_repo.get((str(source_path), self.kind))
        if handle is not None and not handle.done():
            return handle
        return None

    def start(self, source: MediaSource, target_path: Path) -> JobHandle:
        """Spawn a job, or attach to the one already running for this source.

        Never blocks on the child process. Spawn problems do not raise:
        they come back as an already-terminal FAILED handle.
        """
        job = ConversionJob(
            source_path=source.path,
            target_path=Path(target_path),
            kind=self.kind,
        )
        handle, registered = self.job_repo.claim(JobHandle(job, source))
        if not registered:
            print(f"  → Attaching to running {self.description.lower()} for {source.path.name}")
            return handle

        try:
            tool = self.resolve_tool()
        except ToolUnavailable as e:
            self._finish(handle, JobStatus.FAILED, ErrorKind.TOOL_UNAVAILABLE, e.message)
            return handle

        cmd = self.build_command(tool, job, source)
        print(f"  → {self.description}: {source.path.name}")
        print(f"    $ {' '.join(cmd)}")

        try:
            self.prepare_target(job)
            process = self.popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            self._finish(handle, JobStatus.FAILED, ErrorKind.SPAWN_FAILED, f"Failed to start {tool}: {e}")
            return handle

        with handle.lock:
            job.process = process
            cancelled_early = handle.done()
            if not cancelled_early:
                job.started_at = time.monotonic()
                job.status = JobStatus.RUNNING

        if cancelled_early:
            # Cancelled between claim and spawn; the child must not outlive its job.
            print(f"  → {self.description} cancelled before start, killing pid {getattr(process, 'pid', '?')}")
            threading.Thread(
                target=self._abandon,
                args=(job, process),
                daemon=True,
            ).start()
            return handle

        tracker = ProgressTracker(
            expected_seconds=self.expected_seconds,
            total_seconds=self.total_seconds(source),
            frame_rate=self.output_frame_rate(source),
        )
        if getattr(process, "stderr", None) is not None:
            threading.Thread(
                target=self._read_output,
                args=(process, tracker),
                daemon=True,
            ).start()
        threading.Thread(
            target=self._supervise,
            args=(handle, tracker),
            daemon=True,
        ).start()
        return handle

    def poll(self, handle: JobHandle) -> JobStatus:
        """Current status of a job. Never blocks."""
        return handle.status

    def cancel(self, handle: JobHandle) -> bool:
        """Kill the job's process and mark it CANCELLED.

        Returns at once; the supervising thread reaps the process.

        Returns:
            True if the job was live and is now cancelled
        """
        handle.cancel_event.set()
        return self._finish(handle, JobStatus.CANCELLED, ErrorKind.PROCESS_CANCELLED, "Cancelled by request")

    def cancel_all(self) -> int:
        """Cancel every active job of this runner's kind."""
        count = 0
        for handle in self.job_repo.list():
            if handle.job.kind == self.kind and self.cancel(handle):
                count += 1
        return count

    # ── internals ──────────────────────────────────────────────────────────
    def _read_output(self, process, tracker: ProgressTracker) -> None:
        """Drain stderr so the pipe never fills; feed the progress tracker.

        Undecodable bytes arrive as U+FFFD (the pipe is opened with
        ``errors="replace"``), so only a closed pipe ends the loop.
        """
        try:
            for line in iter(process.stderr.readline, ''):
                tracker.process_line(line)
        except (OSError, ValueError):
            pass

    def _abandon(self, job: ConversionJob, process) -> None:
        """Kill and reap a child whose job is already terminal, then clean up after it."""
        self._kill(process)
        self._reap(process)
        if self.active_handle(job.source_path) is not None:
            return
        try:
            self.discard_output(job)
        except OSError as e:
            print(f"    Could not remove partial output {job.target_path}: {e}")

    def _supervise(self, handle: JobHandle, tracker: ProgressTracker) -> None:
        job = handle.job
        process = job.process
        try:
            while True:
                if handle.done():
                    self._kill(process)
                    self._reap(process)
                    return

                returncode = process.poll()
                if returncode is not None:
                    break

                if job.elapsed > self.timeout:
                    self._kill(process)
                    self._reap(process)
                    job.output_tail = tracker.tail
                    self._finish(
                        handle, JobStatus.TIMED_OUT, ErrorKind.PROCESS_TIMED_OUT,
                        f"{self.description} exceeded {self.timeout:.0f}s and was killed",
                    )
                    return

                handle.report_progress(tracker.estimate(job.elapsed))
                handle.cancel_event.wait(self.poll_interval)

            job.returncode = returncode
            job.output_tail = tracker.tail
            if returncode != 0:
                detail = f": {tracker.tail[-1]}" if tracker.tail else ""
                self._finish(
                    handle, JobStatus.FAILED, ErrorKind.PROCESS_FAILED,
                    f"{self.tool_name} exited with code {returncode}{detail}",
                )
            elif not self.output_ready(job):
                self._finish(
                    handle, JobStatus.FAILED, ErrorKind.OUTPUT_MISSING_AFTER_SUCCESS,
                    f"{self.tool_name} exited 0 but produced no output at {job.target_path}",
                )
            else:
                self._finish(handle, JobStatus.SUCCEEDED)
        except Exception as e:
            self._kill(process)
            self._finish(handle, JobStatus.FAILED, ErrorKind.PROCESS_FAILED, f"Supervisor error: {e}")

    def _finish(
        self,
        handle: JobHandle,
        status: JobStatus,
        error_kind: Optional[ErrorKind] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move a job to a terminal status exactly once.

        Non-success statuses kill the process and discard partial output.
        The handle is released from the registry before the future
        resolves, so a caller reacting to completion can start afresh.
        """
        job = handle.job
        with handle.lock:
            if handle.done() or job.status.is_terminal:
                return False

            if status == JobStatus.SUCCEEDED:
                try:
                    self.on_success(handle)
                except Exception as e:
                    status = JobStatus.FAILED
                    error_kind = ErrorKind.PROCESS_FAILED
                    error = f"Post-processing failed: {e}"

            job.status = status
            job.error_kind = error_kind
            job.error = error
            job.finished_at = time.monotonic()

            if status == JobStatus.SUCCEEDED:
                job.progress = 100.0
                print(f"  → {self.description} finished in {job.elapsed:.1f}s: {job.source_path.name}")
            else:
                self._kill(job.process)
                try:
                    self.discard_output(job)
                except OSError as e:
                    print(f"    Could not remove partial output {job.target_path}: {e}")
                print(f"  → {self.description} {status.value}: {error}")

        self.job_repo.release(handle)
        handle.future.set_result(job)
        return True

    @staticmethod
    def _kill(process) -> None:
        if process is None:
            return
        try:
            if process.poll() is None:
                process.kill()
        except OSError:
            pass

    @staticmethod
    def _reap(process) -> None:
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            print(f"    Process {getattr(process, 'pid', '?')} did not exit after kill")
