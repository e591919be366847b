"""Domain entities - internal representation (framework-agnostic)."""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from clipcache.errors import ErrorKind


class ClassificationKind(str, Enum):
    """How a source has to be handled before it can be played."""
    NATIVE_PLAYABLE = "native_playable"
    NEEDS_TRANSCODE = "needs_transcode"
    NEEDS_ALPHA_EXTRACTION = "needs_alpha_extraction"
    UNSUPPORTED = "unsupported"


class JobKind(str, Enum):
    """Kind of external-tool job."""
    STANDARD_TRANSCODE = "standard_transcode"
    ALPHA_EXTRACTION = "alpha_extraction"


class JobStatus(str, Enum):
    """Conversion job status enumeration."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


class LoadState(str, Enum):
    """Pipeline façade state for one load request."""
    IDLE = "idle"
    CLASSIFYING = "classifying"
    DIRECT_LOAD = "direct_load"
    CONVERTING = "converting"
    EXTRACTING = "extracting"
    READY = "ready"
    FAILED = "failed"


class PlaybackState(str, Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass(frozen=True)
class MediaSource:
    """Input file as seen at request time. Probe fields filled by the classifier."""
    path: Path
    extension: str
    modified_time: int
    codec_name: Optional[str] = None
    pix_fmt: Optional[str] = None
    frame_rate: Optional[float] = None
    duration: Optional[float] = None

    @property
    def stem(self) -> str:
        return self.path.stem


@dataclass(frozen=True)
class Classification:
    """Result of inspecting a MediaSource."""
    kind: ClassificationKind
    has_alpha: bool
    source: MediaSource
    codec_name: Optional[str] = None
    pix_fmt: Optional[str] = None
    probed: bool = False


@dataclass
class ConversionJob:
    """One external-process invocation.

    Owned by the runner that created it. ``progress`` is an estimate in
    percent and only ever moves forward while the job runs.
    """
    source_path: Path
    target_path: Path
    kind: JobKind
    status: JobStatus = JobStatus.PENDING
    process: Optional[object] = None
    progress: float = 0.0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    returncode: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    output_tail: List[str] = field(default_factory=list)

    @property
    def key(self) -> tuple:
        """Single-flight key: one active job per (source, kind)."""
        return (str(self.source_path), self.kind)

    @property
    def elapsed(self) -> float:
        """Wall time since spawn, in seconds."""
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return max(0.0, end - self.started_at)

    def update_progress(self, percent: float) -> float:
        self.progress = max(self.progress, min(100.0, float(percent)))
        return self.progress


@dataclass(frozen=True)
class SequenceCacheEntry:
    """Sidecar record proving a frame directory matches its source."""
    source_path: str
    source_modified_time: int
    created_time: int
    version: str
    frame_count: int = 0
    frame_rate: float = 30.0


@dataclass(frozen=True)
class DirectStream:
    """Asset the playback layer can open as-is."""
    path: Path


@dataclass(frozen=True)
class FrameSequence:
    """Decoded RGBA frames on disk, in playback order."""
    frames: tuple
    frame_rate: float

    @property
    def frame_count(self) -> int:
        return len(self.frames)


Asset = Union[DirectStream, FrameSequence]


@dataclass
class PlaybackCursor:
    """Mutable playback position for one asset."""
    index: int = 0
    state: PlaybackState = PlaybackState.STOPPED
    loop: bool = True
    frame_rate: float = 30.0
    anchor_time: float = 0.0
    anchor_index: int = 0

    def reset(self) -> None:
        self.index = 0
        self.anchor_index = 0
        self.state = PlaybackState.STOPPED


@dataclass(frozen=True)
class FailureReason:
    """Why a load ended in FAILED."""
    kind: ErrorKind
    message: str
    job_status: Optional[JobStatus] = None
