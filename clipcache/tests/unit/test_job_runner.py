"""Unit tests for job supervision (spawn, single-flight, timeout, cancel)."""

import sys
import threading
import time
from unittest.mock import patch

import pytest

from clipcache.errors import ErrorKind
from clipcache.job_runner import JobRunner
from clipcache.models.domain import JobKind, JobStatus, MediaSource
from clipcache.repositories.job_repository import JobRepository
from clipcache.services.conversion_service import ConversionService


def describe(path) -> MediaSource:
    return MediaSource(path=path, extension=path.suffix.lower(), modified_time=path.stat().st_mtime_ns)


class SleepingConversion(ConversionService):
    """Runs a real child that outlives any sane timeout."""

    def build_command(self, tool, job, source):
        return [tool, "-c", "import time; time.sleep(30)"]


class NoisyConversion(ConversionService):
    """Real child that writes undecodable bytes and a lot of stderr, then succeeds."""

    def build_command(self, tool, job, source):
        script = (
            "import sys\n"
            "sys.stderr.buffer.write(b'title=\\xff\\xfe\\n')\n"
            "for i in range(8000):\n"
            "    sys.stderr.buffer.write(b'frame=%d time=00:00:01.00\\n' % i)\n"
            "sys.stderr.flush()\n"
            f"open({str(job.target_path)!r}, 'wb').write(b'converted')\n"
        )
        return [tool, "-c", script]


class TestJobRepository:

    def test_claim_is_single_flight(self):
        repo = JobRepository()
        first = _StubHandle(("a", JobKind.ALPHA_EXTRACTION))
        second = _StubHandle(("a", JobKind.ALPHA_EXTRACTION))

        assert repo.claim(first) == (first, True)
        assert repo.claim(second) == (first, False)

    def test_claim_replaces_finished_handle(self):
        repo = JobRepository()
        first = _StubHandle(("a", JobKind.ALPHA_EXTRACTION), finished=True)
        second = _StubHandle(("a", JobKind.ALPHA_EXTRACTION))

        repo.claim(first)
        assert repo.claim(second) == (second, True)

    def test_kinds_are_independent(self):
        repo = JobRepository()
        extraction = _StubHandle(("a", JobKind.ALPHA_EXTRACTION))
        transcode = _StubHandle(("a", JobKind.STANDARD_TRANSCODE))

        assert repo.claim(extraction)[1] is True
        assert repo.claim(transcode)[1] is True
        assert len(repo.get_by_source("a")) == 2

    def test_release_only_registered_handle(self):
        repo = JobRepository()
        first = _StubHandle(("a", JobKind.ALPHA_EXTRACTION))
        stranger = _StubHandle(("a", JobKind.ALPHA_EXTRACTION))

        repo.claim(first)
        assert repo.release(stranger) is False
        assert repo.release(first) is True
        assert repo.list() == []


class _StubHandle:
    def __init__(self, key, finished=False):
        self.key = key
        self._finished = finished

    def done(self):
        return self._finished


class TestJobRunner:
    """Test the supervised lifecycle with fake and real processes."""

    @pytest.fixture
    def source(self, make_source):
        return describe(make_source("clip.mkv"))

    def make_runner(self, config, popen, **kwargs):
        kwargs.setdefault("tool_path", "ffmpeg")
        return ConversionService(config, JobRepository(), popen=popen, **kwargs)

    def test_success(self, config, source, fake_popen):
        popen = fake_popen()
        runner = self.make_runner(config, popen)

        handle = runner.convert(source)
        job = handle.wait(5)

        assert job.status == JobStatus.SUCCEEDED
        assert job.progress == 100.0
        assert job.returncode == 0
        assert job.target_path.is_file()
        assert len(popen.calls) == 1
        assert runner.job_repo.list() == []

    def test_second_start_attaches_to_running_job(self, config, source, fake_popen):
        hold = threading.Event()
        popen = fake_popen(hold=hold)
        runner = self.make_runner(config, popen)

        first = runner.convert(source)
        second = runner.convert(source)
        assert second is first
        assert runner.poll(first) == JobStatus.RUNNING

        hold.set()
        assert first.wait(5).status == JobStatus.SUCCEEDED
        assert len(popen.calls) == 1

    def test_nonzero_exit_fails_and_discards_output(self, config, source, fake_popen):
        popen = fake_popen(returncode=1)
        runner = self.make_runner(config, popen)

        job = runner.convert(source).wait(5)

        assert job.status == JobStatus.FAILED
        assert job.error_kind == ErrorKind.PROCESS_FAILED
        assert "code 1" in job.error
        assert not job.target_path.exists()

    def test_exit_zero_without_output_fails(self, config, source, fake_popen):
        popen = fake_popen(write_output=False)
        runner = self.make_runner(config, popen)

        job = runner.convert(source).wait(5)

        assert job.status == JobStatus.FAILED
        assert job.error_kind == ErrorKind.OUTPUT_MISSING_AFTER_SUCCESS

    def test_cancel_kills_and_discards(self, config, source, fake_popen):
        hold = threading.Event()
        popen = fake_popen(hold=hold)
        runner = self.make_runner(config, popen)

        handle = runner.convert(source)
        handle.job.target_path.write_bytes(b"partial")

        assert runner.cancel(handle) is True
        job = handle.wait(5)

        assert job.status == JobStatus.CANCELLED
        assert job.error_kind == ErrorKind.PROCESS_CANCELLED
        assert popen.processes[0].killed is True
        assert not job.target_path.exists()
        assert runner.cancel(handle) is False

    def test_cancel_all(self, config, source, make_source, fake_popen):
        hold = threading.Event()
        runner = self.make_runner(config, fake_popen(hold=hold))
        other = describe(make_source("other.avi"))

        handles = [runner.convert(source), runner.convert(other)]

        assert runner.cancel_all() == 2
        assert all(h.wait(5).status == JobStatus.CANCELLED for h in handles)

    def test_missing_tool_fails_without_spawning(self, config, source, fake_popen):
        popen = fake_popen()
        runner = self.make_runner(config, popen, tool_path=None)

        with patch("clipcache.job_runner.find_tool", return_value=None):
            handle = runner.convert(source)

        assert handle.done()
        assert handle.job.status == JobStatus.FAILED
        assert handle.job.error_kind == ErrorKind.TOOL_UNAVAILABLE
        assert popen.calls == []

    def test_spawn_failure(self, config, source):
        def broken_popen(cmd, **kwargs):
            raise FileNotFoundError("no such file: ffmpeg")

        runner = self.make_runner(config, broken_popen)
        job = runner.convert(source).wait(5)

        assert job.status == JobStatus.FAILED
        assert job.error_kind == ErrorKind.SPAWN_FAILED

    def test_progress_listeners_see_increasing_values(self, config, source, fake_popen):
        hold = threading.Event()
        runner = self.make_runner(config, fake_popen(hold=hold), expected_seconds=0.2)
        seen = []

        handle = runner.convert(source)
        handle.add_progress_listener(seen.append)
        time.sleep(0.15)
        hold.set()
        handle.wait(5)

        assert seen
        assert seen == sorted(seen)
        assert all(0 < p <= 100 for p in seen)

    def test_timeout_kills_real_process(self, config, source):
        """A child running past the timeout is killed and marked TIMED_OUT."""
        runner = SleepingConversion(
            config,
            JobRepository(),
            tool_path=sys.executable,
            timeout=0.5,
            poll_interval=0.05,
        )

        started = time.monotonic()
        handle = runner.convert(source)
        job = handle.wait(15)

        assert job.status == JobStatus.TIMED_OUT
        assert job.error_kind == ErrorKind.PROCESS_TIMED_OUT
        assert time.monotonic() - started < 10
        assert job.process.poll() is not None
        assert not job.target_path.exists()

    def test_undecodable_stderr_does_not_stall_the_job(self, config, source):
        """Invalid UTF-8 followed by more than a pipe buffer of stderr still succeeds."""
        runner = NoisyConversion(
            config,
            JobRepository(),
            tool_path=sys.executable,
            timeout=20,
            poll_interval=0.05,
        )

        job = runner.convert(source).wait(30)

        assert job.status == JobStatus.SUCCEEDED
        assert job.target_path.read_bytes() == b"converted"
        assert job.elapsed < 20

    def test_cancel_before_spawn_kills_the_child(self, config, source, fake_popen):
        hold = threading.Event()
        spawner = fake_popen(hold=hold)

        def cancelling_popen(cmd, **kwargs):
            for handle in runner.job_repo.list():
                runner.cancel(handle)
            return spawner(cmd, **kwargs)

        runner = self.make_runner(config, cancelling_popen)
        handle = runner.convert(source)

        assert handle.done()
        assert handle.job.status == JobStatus.CANCELLED

        process = spawner.processes[0]
        deadline = time.monotonic() + 5
        while not process.killed and time.monotonic() < deadline:
            time.sleep(0.01)
        assert process.killed is True
        assert not handle.job.target_path.exists()

        hold.set()
        assert handle.job.status == JobStatus.CANCELLED

    def test_runner_requires_a_command(self):
        with pytest.raises(TypeError):
            JobRunner(JobRepository(), timeout=1, expected_seconds=1)
