"""Subprocess progress utilities.

Provides reusable components for supervising ffmpeg runs:
- Progress parsing of the tool's stderr (``time=`` / ``frame=`` lines)
- Elapsed-time progress estimates when the tool reports nothing useful
- A bounded tail of tool output for error messages

Progress is always an estimate. Nothing should wait for it to reach 100.
"""

import re
from collections import deque
from dataclasses import dataclass
from typing import Optional

RUNNING_PROGRESS_CAP = 99.0


def parse_timestamp(value: str) -> Optional[float]:
    """Convert ``HH:MM:SS(.ff)`` into seconds.

    Returns:
        Seconds as float, or None for malformed or negative values
        (ffmpeg prints ``time=-577014:32:22.77`` before the first packet).
    """
    parts = value.strip().split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = int(parts[0]), int(parts[1]), float(parts[2])
    except ValueError:
        return None
    if hours < 0 or minutes < 0 or seconds < 0:
        return None
    return hours * 3600 + minutes * 60 + seconds


@dataclass
class ProgressPattern:
    """Defines a regex pattern for extracting a position from tool output.

    Attributes:
        name: Descriptive name for this progress type
        pattern: Compiled regex whose first group holds the position
        unit: 'seconds' (HH:MM:SS timestamp) or 'frames' (frame counter)
    """

    name: str
    pattern: re.Pattern
    unit: str = "seconds"

    def match(self, line: str) -> Optional[float]:
        """Try to match this pattern against a line.

        Returns:
            Position in the pattern's unit if matched, None otherwise
        """
        match = self.pattern.search(line)
        if not match:
            return None
        raw = match.group(1)
        if self.unit == "seconds":
            return parse_timestamp(raw)
        try:
            return float(raw)
        except ValueError:
            return None


def create_ffmpeg_patterns() -> list[ProgressPattern]:
    """Create progress patterns for ffmpeg status lines."""
    return [
        ProgressPattern(
            name="Time",
            pattern=re.compile(r"time=\s*(-?\d+:\d{2}:\d{2}(?:\.\d+)?)"),
            unit="seconds",
        ),
        ProgressPattern(
            name="Frames",
            pattern=re.compile(r"frame=\s*(\d+)"),
            unit="frames",
        ),
    ]


class ProgressTracker:
    """Tracks progress of one ffmpeg run.

    Two sources feed the estimate: the media position parsed from the
    tool's output (needs a known total duration) and elapsed wall time
    against an expected duration. The larger wins, capped below 100 while
    the process is alive.
    """

    def __init__(
        self,
        expected_seconds: float,
        total_seconds: Optional[float] = None,
        frame_rate: Optional[float] = None,
        patterns: list[ProgressPattern] = None,
        tail_size: int = 20,
    ):
        """Initialize progress tracker.

        Args:
            expected_seconds: Wall time a typical run takes
            total_seconds: Media duration, when the probe knew it
            frame_rate: Output frame rate, converts frame counters to seconds
            patterns: Progress patterns to match (default: ffmpeg patterns)
            tail_size: Number of output lines kept for diagnostics
        """
        self.expected_seconds = max(expected_seconds, 0.001)
        self.total_seconds = total_seconds if total_seconds and total_seconds > 0 else None
        self.frame_rate = frame_rate
        self.patterns = patterns if patterns is not None else create_ffmpeg_patterns()
        self._position: Optional[float] = None
        self._tail = deque(maxlen=tail_size)

    @property
    def tail(self) -> list[str]:
        """Last lines of tool output."""
        return list(self._tail)

    @property
    def position(self) -> Optional[float]:
        """Latest parsed media position in seconds."""
        return self._position

    def process_line(self, line: str) -> Optional[float]:
        """Process a line of output and return the parsed position, if any.

        Args:
            line: Line of output to process

        Returns:
            Media position in seconds, or None
        """
        line_stripped = line.strip()
        if not line_stripped:
            return None
        self._tail.append(line_stripped)

        for pattern in self.patterns:
            value = pattern.match(line_stripped)
            if value is None:
                continue
            if pattern.unit == "frames":
                if not self.frame_rate:
                    continue
                value = value / self.frame_rate
            self._position = max(self._position or 0.0, value)
            return self._position

        return None

    def estimate(self, elapsed: float) -> float:
        """Progress percentage for a running process."""
        percent = 100.0 * elapsed / self.expected_seconds
        if self._position is not None and self.total_seconds:
            percent = max(percent, 100.0 * self._position / self.total_seconds)
        return min(percent, RUNNING_PROGRESS_CAP)
