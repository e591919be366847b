"""Media utilities for frame files and cache paths."""

import hashlib
import re
from pathlib import Path
from typing import List

FRAME_PREFIX = "frame_"
FRAME_OUTPUT_PATTERN = "frame_%04d.png"
FRAME_FILE_RE = re.compile(r"^frame_(\d{4,})\.png$")


def frame_index(frame_path: Path) -> int:
    """Numeric index encoded in a frame filename (frame_0042.png -> 42).

    Returns -1 for names that are not frame files.
    """
    match = FRAME_FILE_RE.match(frame_path.name)
    return int(match.group(1)) if match else -1


def get_frame_files(frames_dir: Path) -> List[Path]:
    """Get frame files in a directory, in numeric order.

    Args:
        frames_dir: Directory containing frames

    Returns:
        Sorted list of frame file paths (empty if the directory is missing)
    """
    if not frames_dir.exists():
        return []

    frames = [p for p in frames_dir.iterdir() if p.is_file() and FRAME_FILE_RE.match(p.name)]
    return sorted(frames, key=frame_index)


def has_frame_files(frames_dir: Path) -> bool:
    """True as soon as one frame file is found."""
    if not frames_dir.is_dir():
        return False
    return any(FRAME_FILE_RE.match(p.name) for p in frames_dir.iterdir())


def source_cache_name(source_path: Path) -> str:
    """Stable, filesystem-safe directory/file stem for a source path.

    Two sources with the same filename in different folders get
    different names.
    """
    safe_stem = "".join(c if c.isalnum() or c in "-_" else "_" for c in source_path.stem)
    safe_stem = safe_stem.strip("_") or "source"
    digest = hashlib.sha1(str(source_path).encode("utf-8")).hexdigest()[:12]
    return f"{safe_stem}_{digest}"


def get_dir_size_bytes(directory: Path) -> int:
    """Calculate total size of all files in a directory recursively."""
    if not directory.exists():
        return 0

    total = 0
    for item in directory.rglob("*"):
        if item.is_file():
            try:
                total += item.stat().st_size
            except OSError:
                pass
    return total
