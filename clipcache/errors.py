"""Error kinds raised and reported by the media pipeline."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Structured failure kinds surfaced to collaborators."""
    SOURCE_NOT_FOUND = "source_not_found"
    UNSUPPORTED_FORMAT = "unsupported_format"
    PROBE_UNAVAILABLE = "probe_unavailable"
    TOOL_UNAVAILABLE = "tool_unavailable"
    SPAWN_FAILED = "spawn_failed"
    PROCESS_FAILED = "process_failed"
    PROCESS_TIMED_OUT = "process_timed_out"
    PROCESS_CANCELLED = "process_cancelled"
    OUTPUT_MISSING_AFTER_SUCCESS = "output_missing_after_success"
    CACHE_CORRUPT = "cache_corrupt"


class ClipCacheError(Exception):
    """Base class for pipeline errors. Carries an ErrorKind."""

    kind: ErrorKind = ErrorKind.PROCESS_FAILED

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path


class SourceNotFound(ClipCacheError):
    kind = ErrorKind.SOURCE_NOT_FOUND


class UnsupportedFormat(ClipCacheError):
    kind = ErrorKind.UNSUPPORTED_FORMAT


class ProbeUnavailable(ClipCacheError):
    """ffprobe missing or unusable. Handled by the classifier, never fatal."""
    kind = ErrorKind.PROBE_UNAVAILABLE


class ToolUnavailable(ClipCacheError):
    kind = ErrorKind.TOOL_UNAVAILABLE


class SpawnFailed(ClipCacheError):
    kind = ErrorKind.SPAWN_FAILED


class CacheCorrupt(ClipCacheError):
    """Sidecar unreadable. Treated as a cache miss by the store."""
    kind = ErrorKind.CACHE_CORRUPT


class ProcessFailed(ClipCacheError):
    kind = ErrorKind.PROCESS_FAILED


class ProcessTimedOut(ClipCacheError):
    kind = ErrorKind.PROCESS_TIMED_OUT


class ProcessCancelled(ClipCacheError):
    kind = ErrorKind.PROCESS_CANCELLED


class OutputMissingAfterSuccess(ClipCacheError):
    """Tool exited 0 but left no output behind."""
    kind = ErrorKind.OUTPUT_MISSING_AFTER_SUCCESS


def error_for(kind: ErrorKind, message: str, path: Optional[str] = None) -> ClipCacheError:
    """Exception instance matching an ErrorKind."""
    for cls in ClipCacheError.__subclasses__():
        if cls.kind == kind:
            return cls(message, path)
    return ClipCacheError(message, path)
