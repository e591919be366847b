"""Unit tests for SequenceCacheStore."""

import json

import pytest

from clipcache.errors import CacheCorrupt
from clipcache.models.domain import MediaSource
from clipcache.repositories.sequence_cache import SCHEMA_VERSION, SIDECAR_NAME, SequenceCacheStore


def describe(path, modified_time=None) -> MediaSource:
    return MediaSource(
        path=path,
        extension=path.suffix.lower(),
        modified_time=modified_time if modified_time is not None else path.stat().st_mtime_ns,
    )


class TestSequenceCacheStore:
    """Test sidecar validation and cache maintenance."""

    @pytest.fixture
    def store(self, cache_root):
        return SequenceCacheStore(cache_root)

    @pytest.fixture
    def cached(self, store, make_source, frame_writer):
        """A source with a valid 12-frame cache entry."""
        source = describe(make_source("clip.webm"))
        frame_directory = store.frame_directory_for(source.path)
        frame_writer(frame_directory, 12)
        store.write(source, frame_directory, frame_rate=24.0)
        return source, frame_directory

    def test_write_and_validate(self, store, cached):
        source, frame_directory = cached

        assert store.is_valid(source, frame_directory) is True
        entry = store.read(frame_directory)
        assert entry.source_path == str(source.path)
        assert entry.source_modified_time == source.modified_time
        assert entry.version == SCHEMA_VERSION
        assert entry.frame_count == 12
        assert entry.frame_rate == 24.0

    def test_sidecar_is_json(self, cached):
        _, frame_directory = cached
        data = json.loads((frame_directory / SIDECAR_NAME).read_text())
        assert set(data) >= {"source_path", "source_modified_time", "created_time", "version"}

    def test_modified_source_invalidates(self, store, cached):
        """A changed mtime invalidates and removes the stale frames."""
        source, frame_directory = cached
        touched = describe(source.path, modified_time=source.modified_time + 1_000_000_000)

        assert store.is_valid(touched, frame_directory) is False
        assert not (frame_directory / SIDECAR_NAME).exists()
        assert list(frame_directory.glob("frame_*.png")) == []

    def test_other_source_path_invalidates(self, store, cached, make_source):
        _, frame_directory = cached
        other = describe(make_source("other.webm"))

        assert store.is_valid(other, frame_directory) is False

    def test_corrupt_sidecar_is_a_miss(self, store, cached):
        source, frame_directory = cached
        (frame_directory / SIDECAR_NAME).write_text("{not json")

        assert store.get(frame_directory) is None
        with pytest.raises(CacheCorrupt):
            store.read(frame_directory)
        assert store.is_valid(source, frame_directory) is False
        assert list(frame_directory.glob("frame_*.png")) == []

    def test_schema_version_mismatch_invalidates(self, store, cached):
        source, frame_directory = cached
        sidecar = frame_directory / SIDECAR_NAME
        data = json.loads(sidecar.read_text())
        data["version"] = "0.9"
        sidecar.write_text(json.dumps(data))

        assert store.is_valid(source, frame_directory) is False

    def test_sidecar_without_frames_is_invalid(self, store, cached):
        source, frame_directory = cached
        for frame in frame_directory.glob("frame_*.png"):
            frame.unlink()

        assert store.is_valid(source, frame_directory) is False

    def test_missing_directory_is_a_plain_miss(self, store, make_source):
        source = describe(make_source("fresh.webm"))
        assert store.is_valid(source, store.frame_directory_for(source.path)) is False

    def test_load_sequence_numeric_order(self, store, make_source, frame_writer):
        source = describe(make_source("long.webm"))
        frame_directory = store.frame_directory_for(source.path)
        frame_writer(frame_directory, 11)
        store.write(source, frame_directory)

        sequence = store.load_sequence(frame_directory)
        names = [p.name for p in sequence.frames]
        assert names[0] == "frame_0001.png"
        assert names[-1] == "frame_0011.png"
        assert sequence.frame_rate == 30.0
        assert sequence.frame_count == 11

    def test_frame_directory_unique_per_source_path(self, store, tmp_path):
        a = store.frame_directory_for(tmp_path / "a" / "clip.webm")
        b = store.frame_directory_for(tmp_path / "b" / "clip.webm")
        assert a != b
        assert a.name.startswith("clip_")

    def test_list_and_purge(self, store, cached, make_source, frame_writer):
        other = describe(make_source("other.webm"))
        other_dir = store.frame_directory_for(other.path)
        frame_writer(other_dir, 3)
        store.write(other, other_dir)

        assert len(store.list()) == 2
        directories = [d for d, _ in store.list_with_directories()]
        assert other_dir in directories

        assert store.purge() == 2
        assert store.list() == []

    def test_delete(self, store, cached):
        _, frame_directory = cached
        assert store.delete(frame_directory) is True
        assert not frame_directory.exists()
        assert store.delete(frame_directory) is False

    def test_listeners_hear_before_frames_are_removed(self, store, cached):
        source, frame_directory = cached
        heard = []
        store.add_invalidation_listener(
            lambda d: heard.append((d, len(list(d.glob("frame_*.png")))))
        )

        touched = describe(source.path, modified_time=source.modified_time + 1_000_000_000)
        store.is_valid(touched, frame_directory)

        assert heard == [(frame_directory, 12)]

    def test_purge_notifies_every_directory(self, store, cached):
        _, frame_directory = cached
        heard = []
        store.add_invalidation_listener(heard.append)

        store.purge()

        assert heard == [frame_directory]
