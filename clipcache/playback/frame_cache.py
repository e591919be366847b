"""Bounded in-memory cache of decoded frames for one frame sequence.

Eviction is by distance from the playback cursor, not by recency: the
frames kept are the ones nearest the play head, which is what forward
looping and short seeks hit next.
"""

import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from PIL import Image

from clipcache.errors import CacheCorrupt
from clipcache.models.domain import FrameSequence, PlaybackCursor, PlaybackState

DEFAULT_CAPACITY = 30


def load_rgba(path) -> Image.Image:
    """Decode a frame file fully into memory as RGBA."""
    with Image.open(path) as img:
        img.load()
        return img.convert("RGBA") if img.mode != "RGBA" else img.copy()


class FrameCache:
    """Frame images keyed by index, at most ``capacity`` at a time.

    Owned by one player. Request handlers reach it from worker threads,
    so every read and write holds ``lock``.
    """

    def __init__(
        self,
        sequence: FrameSequence,
        capacity: int = DEFAULT_CAPACITY,
        loader: Callable = load_rgba,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("Frame cache capacity must be at least 1")
        self.sequence = sequence
        self.capacity = capacity
        self.loader = loader
        self.clock = clock
        self.lock = threading.RLock()
        self._frames: Dict[int, Image.Image] = {}
        self._cursor_index = 0
        self._finished_listeners: List[Callable[[], None]] = []

    def __len__(self) -> int:
        with self.lock:
            return len(self._frames)

    def __contains__(self, index: int) -> bool:
        with self.lock:
            return index in self._frames

    @property
    def indices(self) -> List[int]:
        with self.lock:
            return sorted(self._frames)

    def clear(self) -> None:
        with self.lock:
            self._frames.clear()

    def add_finished_listener(self, callback: Callable[[], None]) -> None:
        """Called when non-looping playback runs past the last frame."""
        with self.lock:
            self._finished_listeners.append(callback)

    # ── cache ──────────────────────────────────────────────────────────────
    def get_frame(self, index: int, cursor_index: Optional[int] = None) -> Image.Image:
        """Return frame ``index``, decoding it from disk on a miss.

        Raises:
            IndexError: If the index is outside the sequence
            CacheCorrupt: If the frame file is gone (sequence invalidated)
        """
        if not 0 <= index < self.sequence.frame_count:
            raise IndexError(f"Frame {index} outside 0..{self.sequence.frame_count - 1}")

        with self.lock:
            if cursor_index is not None:
                self._cursor_index = cursor_index

            image = self._frames.get(index)
            if image is None:
                path = self.sequence.frames[index]
                try:
                    image = self.loader(path)
                except FileNotFoundError as e:
                    raise CacheCorrupt(
                        f"Frame {index} is gone from {Path(path).parent}; load the source again",
                        str(path),
                    ) from e
                self.insert(index, image)
            return image

    def insert(self, index: int, image: Image.Image, cursor_index: Optional[int] = None) -> None:
        """Store a frame, then evict the farthest ones if over capacity."""
        with self.lock:
            if cursor_index is not None:
                self._cursor_index = cursor_index
            self._frames[index] = image
            self._evict()

    def _evict(self) -> None:
        center = self._cursor_index
        while len(self._frames) > self.capacity:
            # Ties go to the frame behind the cursor.
            victim = max(self._frames, key=lambda i: (abs(i - center), i < center))
            del self._frames[victim]

    # ── cursor ─────────────────────────────────────────────────────────────
    def advance(self, cursor: PlaybackCursor, now: Optional[float] = None) -> int:
        """Move the cursor to the frame due at ``now``.

        Past the last frame playback wraps to 0 when looping, otherwise it
        stops (cursor back to 0) and finished listeners fire. A wrap
        re-anchors at the exact time frame 0 was due, so loops keep the
        same period however late ``advance`` is called.

        Returns:
            The cursor index after advancing
        """
        with self.lock:
            if cursor.state != PlaybackState.PLAYING:
                return cursor.index

            frame_count = self.sequence.frame_count
            if frame_count == 0:
                cursor.reset()
                return cursor.index

            now = self.clock() if now is None else now
            elapsed = max(0.0, now - cursor.anchor_time)
            due = cursor.anchor_index + int(elapsed * cursor.frame_rate)

            if due >= frame_count:
                if not cursor.loop:
                    cursor.reset()
                    self._cursor_index = 0
                    listeners = list(self._finished_listeners)
                    for callback in listeners:
                        callback()
                    return cursor.index

                wraps = due // frame_count
                cursor.anchor_time += (wraps * frame_count - cursor.anchor_index) / cursor.frame_rate
                cursor.anchor_index = 0
                due %= frame_count

            cursor.index = due
            self._cursor_index = due
            return due

    def seek(self, cursor: PlaybackCursor, index: int, now: Optional[float] = None) -> int:
        """Jump to ``index`` (clamped) and restart timing from there."""
        with self.lock:
            last = max(0, self.sequence.frame_count - 1)
            index = max(0, min(int(index), last))
            cursor.index = index
            cursor.anchor_index = index
            cursor.anchor_time = self.clock() if now is None else now
            self._cursor_index = index
            return index
