"""Pytest configuration and fixtures."""

import sys
import threading
from pathlib import Path

# Add repo root for imports - do this before other imports
repo_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(repo_root))

import pytest
from PIL import Image

from clipcache.services.config_service import CACHE_DIR_ENV, ConfigService


def write_frames(frame_directory: Path, count: int, size=(2, 2)) -> list:
    """Write ``count`` numbered RGBA PNG frames, starting at frame_0001."""
    frame_directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for i in range(1, count + 1):
        path = frame_directory / f"frame_{i:04d}.png"
        Image.new("RGBA", size, (i % 256, 0, 0, 128)).save(path)
        paths.append(path)
    return paths


class FakeProcess:
    """Stands in for an ffmpeg Popen object.

    Produces its output (frame files or a converted file, decided from the
    last command argument) when it "exits". With ``hold`` set it keeps
    running until the event is set.
    """

    def __init__(self, cmd, frames=120, returncode=0, write_output=True, hold=None):
        self.cmd = cmd
        self.frames = frames
        self.returncode = None
        self.pid = 4242
        self.stderr = None
        self.killed = False
        self._exit_code = returncode
        self._write_output = write_output
        self._hold = hold
        self._lock = threading.Lock()
        if hold is None:
            self._exit()

    def _exit(self):
        if self._write_output:
            output = self.cmd[-1]
            if "%04d" in output:
                write_frames(Path(output).parent, self.frames)
            else:
                Path(output).write_bytes(b"converted")
        self.returncode = self._exit_code

    def poll(self):
        with self._lock:
            if self.returncode is None and self._hold is not None and self._hold.is_set():
                self._exit()
            return self.returncode

    def wait(self, timeout=None):
        if self._hold is not None and self.returncode is None:
            self._hold.wait(timeout)
        return self.poll()

    def kill(self):
        with self._lock:
            self.killed = True
            if self.returncode is None:
                self.returncode = -9


class FakePopen:
    """Process factory recording every spawn."""

    def __init__(self, **process_kwargs):
        self.process_kwargs = process_kwargs
        self.calls = []
        self.processes = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        process = FakeProcess(cmd, **self.process_kwargs)
        self.processes.append(process)
        return process


@pytest.fixture
def cache_root(tmp_path, monkeypatch):
    """Isolated cache directory (environment override removed)."""
    monkeypatch.delenv(CACHE_DIR_ENV, raising=False)
    root = tmp_path / "cache"
    root.mkdir()
    return root


@pytest.fixture
def config(cache_root):
    """Config pointing at the temporary cache with a fast poll interval."""
    return ConfigService(overrides={
        "cacheDir": str(cache_root),
        "jobs": {"pollIntervalSeconds": 0.01},
    })


@pytest.fixture
def media_dir(tmp_path):
    directory = tmp_path / "media"
    directory.mkdir()
    return directory


@pytest.fixture
def make_source(media_dir):
    """Create a dummy source file by name."""
    def _make(name: str, content: bytes = b"not really video") -> Path:
        path = media_dir / name
        path.write_bytes(content)
        return path.resolve()
    return _make


@pytest.fixture
def fake_popen():
    """Factory for FakePopen launchers: ``fake_popen(frames=10, returncode=1)``."""
    return FakePopen


@pytest.fixture
def frame_writer():
    return write_frames
