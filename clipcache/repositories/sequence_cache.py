"""Sequence cache store - sidecar metadata for extracted frame directories.

Each frame directory holds one ``cache_info.json`` proving the frames
were extracted from a specific source at a specific modification time:

    {
      "source_path": "/media/clip.webm",
      "source_modified_time": 1760000000000000000,
      "created_time": 1760000012,
      "version": "1.0",
      "frame_count": 120,
      "frame_rate": 30.0
    }

Validation is timestamp-based, not a content hash: a changed mtime
invalidates the directory even if the bytes are identical.
"""

import json
import shutil
import time
from pathlib import Path
from typing import Callable, List, Optional

from clipcache.errors import CacheCorrupt
from clipcache.models.domain import FrameSequence, MediaSource, SequenceCacheEntry
from clipcache.repositories.base import Repository
from clipcache.utils.media import get_frame_files, has_frame_files, source_cache_name

SIDECAR_NAME = "cache_info.json"
SCHEMA_VERSION = "1.0"


class SequenceCacheStore(Repository[Path, SequenceCacheEntry]):
    """
    Repository for frame sequence cache entries.

    Current implementation: Filesystem (one sidecar per frame directory
    under ``<cache_root>/sequences``)
    Rationale: Entries must survive restarts; validation has to be O(1)
    """

    def __init__(self, cache_root: Path):
        self.cache_root = Path(cache_root)
        self.sequences_dir = self.cache_root / "sequences"
        self._invalidation_listeners: List[Callable[[Path], None]] = []

    def add_invalidation_listener(self, callback: Callable[[Path], None]) -> None:
        """Call ``callback(frame_directory)`` before a directory's frames are deleted."""
        self._invalidation_listeners.append(callback)

    def _notify_invalidated(self, frame_directory: Path) -> None:
        for callback in list(self._invalidation_listeners):
            callback(Path(frame_directory))

    def frame_directory_for(self, source_path: Path) -> Path:
        """Frame directory assigned to a source."""
        return self.sequences_dir / source_cache_name(Path(source_path))

    @staticmethod
    def sidecar_path(frame_directory: Path) -> Path:
        return Path(frame_directory) / SIDECAR_NAME

    def read(self, frame_directory: Path) -> SequenceCacheEntry:
        """Parse the sidecar of a frame directory.

        Raises:
            CacheCorrupt: If the sidecar is missing, unreadable or incomplete
        """
        sidecar = self.sidecar_path(frame_directory)
        try:
            with open(sidecar, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return SequenceCacheEntry(
                source_path=str(data["source_path"]),
                source_modified_time=int(data["source_modified_time"]),
                created_time=int(data["created_time"]),
                version=str(data["version"]),
                frame_count=int(data.get("frame_count", 0)),
                frame_rate=float(data.get("frame_rate", 30.0)),
            )
        except FileNotFoundError as e:
            raise CacheCorrupt(f"No sidecar in {frame_directory}", str(sidecar)) from e
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CacheCorrupt(f"Unreadable sidecar {sidecar}: {e}", str(sidecar)) from e

    def get(self, frame_directory: Path) -> Optional[SequenceCacheEntry]:
        """Get the sidecar entry, or None when missing or corrupt."""
        try:
            return self.read(frame_directory)
        except CacheCorrupt:
            return None

    def is_valid(self, source: MediaSource, frame_directory: Path) -> bool:
        """Check that a frame directory still matches its source.

        Any failed check invalidates the directory so the caller
        re-extracts into a clean location.
        """
        frame_directory = Path(frame_directory)
        reason = self._validation_failure(source, frame_directory)
        if reason is None:
            return True

        if self.sidecar_path(frame_directory).exists() or has_frame_files(frame_directory):
            print(f"  → Sequence cache invalid for {source.path.name}: {reason}")
            self.invalidate(frame_directory)
        return False

    def _validation_failure(self, source: MediaSource, frame_directory: Path) -> Optional[str]:
        try:
            entry = self.read(frame_directory)
        except CacheCorrupt as e:
            return e.message
        if entry.version != SCHEMA_VERSION:
            return f"schema version {entry.version} != {SCHEMA_VERSION}"
        if entry.source_path != str(source.path):
            return f"recorded for {entry.source_path}"
        if entry.source_modified_time != source.modified_time:
            return "source modified since extraction"
        if not has_frame_files(frame_directory):
            return "no frame files"
        return None

    def write(
        self,
        source: MediaSource,
        frame_directory: Path,
        frame_rate: float = 30.0,
    ) -> SequenceCacheEntry:
        """Record a successful extraction.

        ``source.modified_time`` must be the mtime captured when the
        extraction started, so a file edited mid-extraction is
        re-extracted on the next load.
        """
        frame_directory = Path(frame_directory)
        entry = SequenceCacheEntry(
            source_path=str(source.path),
            source_modified_time=source.modified_time,
            created_time=int(time.time()),
            version=SCHEMA_VERSION,
            frame_count=len(get_frame_files(frame_directory)),
            frame_rate=float(frame_rate),
        )
        frame_directory.mkdir(parents=True, exist_ok=True)
        sidecar = self.sidecar_path(frame_directory)
        tmp = sidecar.with_suffix(".tmp")
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump({
                "source_path": entry.source_path,
                "source_modified_time": entry.source_modified_time,
                "created_time": entry.created_time,
                "version": entry.version,
                "frame_count": entry.frame_count,
                "frame_rate": entry.frame_rate,
            }, f, indent=2)
        tmp.replace(sidecar)
        return entry

    def invalidate(self, frame_directory: Path) -> int:
        """Delete the sidecar and every frame file.

        Returns:
            Number of files removed
        """
        frame_directory = Path(frame_directory)
        self._notify_invalidated(frame_directory)
        removed = 0
        for sidecar in (self.sidecar_path(frame_directory), self.sidecar_path(frame_directory).with_suffix(".tmp")):
            if sidecar.exists():
                sidecar.unlink()
                removed += 1
        for frame in get_frame_files(frame_directory):
            frame.unlink()
            removed += 1
        return removed

    def load_sequence(self, frame_directory: Path) -> FrameSequence:
        """Build the FrameSequence for a validated directory.

        Raises:
            CacheCorrupt: If the sidecar cannot be read
        """
        entry = self.read(frame_directory)
        frames = tuple(get_frame_files(Path(frame_directory)))
        return FrameSequence(frames=frames, frame_rate=entry.frame_rate)

    def list(self) -> List[SequenceCacheEntry]:
        """List readable entries under the sequences directory."""
        return [entry for _, entry in self.list_with_directories()]

    def list_with_directories(self) -> List[tuple]:
        """(frame directory, entry) pairs, sorted by directory name."""
        if not self.sequences_dir.exists():
            return []
        result = []
        for frame_directory in sorted(self.sequences_dir.iterdir()):
            if not frame_directory.is_dir():
                continue
            entry = self.get(frame_directory)
            if entry is not None:
                result.append((frame_directory, entry))
        return result

    def delete(self, frame_directory: Path) -> bool:
        """Remove a frame directory entirely."""
        frame_directory = Path(frame_directory)
        if not frame_directory.exists():
            return False
        self._notify_invalidated(frame_directory)
        shutil.rmtree(frame_directory)
        return True

    def purge(self) -> int:
        """Remove every cached sequence directory.

        Returns:
            Number of directories removed
        """
        if not self.sequences_dir.exists():
            return 0
        count = 0
        for frame_directory in self.sequences_dir.iterdir():
            if frame_directory.is_dir():
                self._notify_invalidated(frame_directory)
                shutil.rmtree(frame_directory)
                count += 1
        return count
