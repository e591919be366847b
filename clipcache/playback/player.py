"""Frame-accurate player for one cached frame sequence.

Public API
----------
play() / pause() / stop()
seek(index)
update()         → frame due now (advances the cursor)
current_frame()  → RGBA image for the cursor position
close()          → detach from a sequence whose frames were invalidated
"""

import time
from typing import Callable, Optional

from PIL import Image

from clipcache.errors import CacheCorrupt
from clipcache.models.domain import FrameSequence, PlaybackCursor, PlaybackState
from clipcache.playback.frame_cache import DEFAULT_CAPACITY, FrameCache, load_rgba


class SequencePlayer:
    """Owns one FrameCache and its PlaybackCursor.

    Transport and frame calls may come from different request threads;
    all of them hold the cache's lock, which also guards the cursor.
    """

    def __init__(
        self,
        sequence: FrameSequence,
        capacity: int = DEFAULT_CAPACITY,
        loop: bool = True,
        loader: Callable = load_rgba,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sequence = sequence
        self.clock = clock
        self.cursor = PlaybackCursor(loop=loop, frame_rate=sequence.frame_rate)
        self.cache = FrameCache(sequence, capacity=capacity, loader=loader, clock=clock)
        self.lock = self.cache.lock
        self.closed = False

    @property
    def state(self) -> PlaybackState:
        return self.cursor.state

    @property
    def index(self) -> int:
        return self.cursor.index

    @property
    def frame_directory(self):
        """Directory holding the sequence's frames (None when empty)."""
        return self.sequence.frames[0].parent if self.sequence.frames else None

    def on_finished(self, callback: Callable[[], None]) -> None:
        self.cache.add_finished_listener(callback)

    def close(self) -> None:
        """Stop and drop cached frames; later calls raise CacheCorrupt."""
        with self.lock:
            self.closed = True
            self.cursor.reset()
            self.cache.clear()

    def _check_open(self) -> None:
        if self.closed:
            raise CacheCorrupt(
                f"Frame sequence in {self.frame_directory} was invalidated; load the source again",
                str(self.frame_directory),
            )

    # ── transport ──────────────────────────────────────────────────────────
    def play(self) -> None:
        with self.lock:
            self._check_open()
            if self.cursor.state == PlaybackState.PLAYING:
                return
            self.cursor.anchor_time = self.clock()
            self.cursor.anchor_index = self.cursor.index
            self.cursor.state = PlaybackState.PLAYING

    def pause(self) -> None:
        with self.lock:
            self._check_open()
            if self.cursor.state != PlaybackState.PLAYING:
                return
            self.cache.advance(self.cursor)
            if self.cursor.state == PlaybackState.PLAYING:
                self.cursor.state = PlaybackState.PAUSED

    def stop(self) -> None:
        with self.lock:
            self._check_open()
            self.cursor.reset()
            self.cache.seek(self.cursor, 0)

    def seek(self, index: int) -> int:
        with self.lock:
            self._check_open()
            return self.cache.seek(self.cursor, index)

    def set_loop(self, loop: bool) -> None:
        with self.lock:
            self.cursor.loop = loop

    # ── frames ─────────────────────────────────────────────────────────────
    def update(self, now: Optional[float] = None) -> int:
        """Advance to the frame due now and return its index."""
        with self.lock:
            self._check_open()
            return self.cache.advance(self.cursor, now)

    def current_frame(self) -> Optional[Image.Image]:
        """Decoded image at the cursor (None for an empty sequence).

        Raises:
            CacheCorrupt: If the player was closed or a frame file is gone
        """
        with self.lock:
            self._check_open()
            if self.sequence.frame_count == 0:
                return None
            return self.cache.get_frame(self.cursor.index, cursor_index=self.cursor.index)

    def render(self, now: Optional[float] = None) -> Optional[Image.Image]:
        """Advance, then return the frame due now, as one step."""
        with self.lock:
            self.update(now)
            return self.current_frame()
