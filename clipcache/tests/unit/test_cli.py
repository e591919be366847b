"""Unit tests for the clipcache command line."""

from unittest.mock import patch

import pytest

from clipcache import cli
from clipcache.models.domain import MediaSource
from clipcache.repositories.sequence_cache import SequenceCacheStore
from clipcache.services.config_service import CACHE_DIR_ENV


@pytest.fixture
def env_cache(tmp_path, monkeypatch):
    root = tmp_path / "cli-cache"
    monkeypatch.setenv(CACHE_DIR_ENV, str(root))
    return root


class TestCli:

    def test_classify_native(self, env_cache, make_source, capsys):
        source = make_source("clip.mp4")

        assert cli.main(["--no-log", "classify", str(source)]) == 0

        out = capsys.readouterr().out
        assert "native_playable" in out
        assert "ffprobe not consulted" in out

    def test_classify_missing(self, env_cache, media_dir, capsys):
        assert cli.main(["--no-log", "classify", str(media_dir / "missing.mov")]) == 1
        assert "Source not found" in capsys.readouterr().err

    def test_load_native(self, env_cache, make_source, capsys):
        source = make_source("clip.mp4")

        assert cli.main(["--no-log", "load", str(source)]) == 0
        assert f"Ready: stream {source}" in capsys.readouterr().out

    def test_load_unsupported(self, env_cache, make_source, capsys):
        assert cli.main(["--no-log", "load", str(make_source("notes.txt"))]) == 1
        assert "unsupported_format" in capsys.readouterr().err

    def test_cache_list_and_purge(self, env_cache, make_source, frame_writer, capsys):
        path = make_source("clip.webm")
        store = SequenceCacheStore(env_cache)
        source = MediaSource(path=path, extension=".webm", modified_time=path.stat().st_mtime_ns)
        frame_directory = store.frame_directory_for(path)
        frame_writer(frame_directory, 4)
        store.write(source, frame_directory)

        assert cli.main(["--no-log", "cache", "list"]) == 0
        out = capsys.readouterr().out
        assert str(path) in out
        assert "1 cached sequence(s)" in out

        assert cli.main(["--no-log", "cache", "purge"]) == 0
        assert "Removed 1" in capsys.readouterr().out

        cli.main(["--no-log", "cache", "list"])
        assert "No cached sequences" in capsys.readouterr().out

    def test_run_is_logged(self, env_cache, make_source):
        cli.main(["classify", str(make_source("clip.mp4"))])

        logs = list((env_cache / "logs").glob("*.log"))
        assert len(logs) == 1
        assert "native_playable" in logs[0].read_text(encoding="utf-8")

    def test_serve_runs_uvicorn(self, env_cache):
        with patch("uvicorn.run") as mock_run:
            assert cli.main(["--no-log", "serve", "--no-browser", "--port", "8123"]) == 0

        kwargs = mock_run.call_args.kwargs
        assert kwargs["port"] == 8123
        assert kwargs["host"] == "127.0.0.1"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.main([])
