"""Utilities package."""

from .media import (
    FRAME_OUTPUT_PATTERN,
    frame_index,
    get_frame_files,
    has_frame_files,
    source_cache_name,
    get_dir_size_bytes,
)
from .platform import find_tool

__all__ = [
    "FRAME_OUTPUT_PATTERN",
    "frame_index",
    "get_frame_files",
    "has_frame_files",
    "source_cache_name",
    "get_dir_size_bytes",
    "find_tool",
]
