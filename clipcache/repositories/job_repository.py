"""Job repository - in-memory registry of active jobs."""

import threading
from typing import Dict, List, Optional, Tuple

from clipcache.models.domain import JobKind
from clipcache.repositories.base import Repository

JobKey = Tuple[str, JobKind]


class JobRepository(Repository[JobKey, "JobHandle"]):
    """
    Registry of in-flight job handles keyed by (source path, job kind).

    Current implementation: In-memory (dict)
    Rationale: Jobs are transient, their processes die with the app

    Holds the single-flight guarantee: ``claim`` either returns the
    handle already registered for a key or registers the new one, under
    one lock, so two callers can never both spawn for the same key.
    """

    def __init__(self):
        self._jobs: Dict[JobKey, "JobHandle"] = {}
        self._lock = threading.Lock()

    def get(self, key: JobKey) -> Optional["JobHandle"]:
        """Get the active handle for a key."""
        with self._lock:
            return self._jobs.get(key)

    def list(self) -> List["JobHandle"]:
        """List all active handles."""
        with self._lock:
            return list(self._jobs.values())

    def claim(self, handle: "JobHandle") -> Tuple["JobHandle", bool]:
        """Register ``handle`` unless a job for its key is already active.

        Returns:
            (handle to use, True if ``handle`` was registered)
        """
        with self._lock:
            existing = self._jobs.get(handle.key)
            if existing is not None and not existing.done():
                return existing, False
            self._jobs[handle.key] = handle
            return handle, True

    def release(self, handle: "JobHandle") -> bool:
        """Remove ``handle`` if it is still the registered one for its key."""
        with self._lock:
            if self._jobs.get(handle.key) is handle:
                del self._jobs[handle.key]
                return True
            return False

    def delete(self, key: JobKey) -> bool:
        """Forget the handle registered for a key."""
        with self._lock:
            if key in self._jobs:
                del self._jobs[key]
                return True
            return False

    def get_by_source(self, source_path: str) -> List["JobHandle"]:
        """All active handles for a source, whatever their kind."""
        with self._lock:
            return [h for (path, _), h in self._jobs.items() if path == source_path]
