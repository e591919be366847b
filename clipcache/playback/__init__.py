"""Frame sequence playback: bounded frame cache and cursor-driven player."""

from .frame_cache import FrameCache, load_rgba
from .player import SequencePlayer

__all__ = ["FrameCache", "SequencePlayer", "load_rgba"]
