"""Data Transfer Objects - API contracts."""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List

from clipcache.errors import ErrorKind
from clipcache.models.domain import (
    ClassificationKind,
    JobStatus,
    LoadState,
    PlaybackState,
)


class ClassificationDTO(BaseModel):
    """Classification result for API responses."""
    path: str
    kind: ClassificationKind
    has_alpha: bool
    codec_name: Optional[str] = None
    pix_fmt: Optional[str] = None
    probed: bool = False


class LoadRequestBody(BaseModel):
    """Request to classify and load a source for a playback target."""
    source_path: str = Field(..., min_length=1)
    target: str = Field("default", min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9_.-]+$")


class CancelRequestBody(BaseModel):
    """Request to cancel every load of a source."""
    source_path: str = Field(..., min_length=1)


class CancelResponse(BaseModel):
    source_path: str
    cancelled: bool


class FailureDTO(BaseModel):
    kind: ErrorKind
    message: str
    job_status: Optional[JobStatus] = None


class AssetDTO(BaseModel):
    """Ready asset: a direct stream path or a frame sequence summary."""
    type: str
    path: Optional[str] = None
    frame_count: Optional[int] = None
    frame_rate: Optional[float] = None


class LoadStatusDTO(BaseModel):
    """Load request state for API responses."""
    target: str
    source_path: str
    state: LoadState
    progress: float = Field(0.0, ge=0.0, le=100.0)
    asset: Optional[AssetDTO] = None
    failure: Optional[FailureDTO] = None


class SeekRequestBody(BaseModel):
    index: int = Field(..., ge=0)


class PlaybackDTO(BaseModel):
    """Playback cursor state for API responses."""
    target: str
    state: PlaybackState
    index: int
    frame_count: int
    frame_rate: float
    loop: bool
    cached_frames: int


class CacheEntryDTO(BaseModel):
    """Sequence cache sidecar for API responses."""
    frame_directory: str
    source_path: str
    source_modified_time: int
    created_time: int
    version: str
    frame_count: int
    frame_rate: float

    model_config = ConfigDict(from_attributes=True)


class CacheListResponse(BaseModel):
    entries: List[CacheEntryDTO]
    total: int


class PurgeResponse(BaseModel):
    removed: int


class ProgressUpdate(BaseModel):
    """Real-time progress update (WebSocket)."""
    type: str
    target: str
    state: LoadState
    progress: float = Field(ge=0.0, le=100.0)
    message: Optional[str] = None
