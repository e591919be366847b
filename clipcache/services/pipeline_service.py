"""Pipeline service - classify, convert or extract, and hand back a playable asset.

State machine per load request:

    IDLE → CLASSIFYING → DIRECT_LOAD ─────────────────────┐
                       → CONVERTING ── job SUCCEEDED ─────┼─→ READY
                       → EXTRACTING ── job SUCCEEDED ─────┘
                          (or sequence cache hit)
    any error / other terminal job status ───────────────────→ FAILED

There is no automatic retry: a FAILED request stays failed until the
caller asks again.
"""

import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from clipcache.errors import CacheCorrupt, ClipCacheError, ErrorKind, SourceNotFound, error_for
from clipcache.job_runner import JobHandle
from clipcache.models.domain import (
    Asset,
    ClassificationKind,
    ConversionJob,
    DirectStream,
    FailureReason,
    FrameSequence,
    JobKind,
    JobStatus,
    LoadState,
    MediaSource,
)
from clipcache.playback.player import SequencePlayer
from clipcache.repositories.job_repository import JobRepository
from clipcache.repositories.sequence_cache import SequenceCacheStore
from clipcache.services.classifier_service import ClassifierService
from clipcache.services.config_service import ConfigService
from clipcache.services.conversion_service import ConversionService
from clipcache.services.extraction_service import ExtractionService


@dataclass(frozen=True)
class LoadProgress:
    percent: float


@dataclass(frozen=True)
class LoadReady:
    asset: Asset


@dataclass(frozen=True)
class LoadFailed:
    reason: FailureReason


LoadEvent = Union[LoadProgress, LoadReady, LoadFailed]


class LoadRequest:
    """Observable outcome of one ``request_load`` call.

    Subscribers get every later event; subscribing after completion
    replays the terminal event.
    """

    def __init__(self, source_path: str, target: str):
        self.source_path = source_path
        self.target = target
        self.state = LoadState.IDLE
        self.progress = 0.0
        self.source: Optional[MediaSource] = None
        self.classification = None
        self.asset: Optional[Asset] = None
        self.failure: Optional[FailureReason] = None
        self.handle: Optional[JobHandle] = None
        self.cancel_requested = False
        self.asset_invalidated = False
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._listeners: List[Callable[[LoadEvent], None]] = []

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until READY or FAILED. Returns False on timeout."""
        return self._done.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> Asset:
        """Block until done and return the asset.

        Raises:
            TimeoutError: If the request is still running after timeout
            ClipCacheError: The subclass matching the failure kind
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"Load of {self.source_path} still {self.state.value}")
        if self.failure is not None:
            raise error_for(self.failure.kind, self.failure.message, self.source_path)
        return self.asset

    def subscribe(self, callback: Callable[[LoadEvent], None]) -> None:
        with self._lock:
            terminal = self._terminal_event() if self.done() else None
            if terminal is None:
                self._listeners.append(callback)
        if terminal is not None:
            callback(terminal)

    def _terminal_event(self) -> Optional[LoadEvent]:
        if self.state == LoadState.READY:
            return LoadReady(self.asset)
        if self.state == LoadState.FAILED:
            return LoadFailed(self.failure)
        return None

    def _emit(self, event: LoadEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(event)
            except Exception as e:
                print(f"    Load listener error ({self.target}): {e}")

    def set_state(self, state: LoadState) -> None:
        with self._lock:
            if self.done():
                return
            self.state = state

    def report_progress(self, percent: float) -> None:
        with self._lock:
            if self.done() or percent <= self.progress:
                return
            self.progress = min(100.0, percent)
            value = self.progress
        self._emit(LoadProgress(value))

    def resolve(self, asset: Asset) -> bool:
        with self._lock:
            if self.done():
                return False
            self.asset = asset
            self.state = LoadState.READY
            self.progress = 100.0
            self._done.set()
        self._emit(LoadReady(asset))
        return True

    def reject(self, reason: FailureReason) -> bool:
        with self._lock:
            if self.done():
                return False
            self.failure = reason
            self.state = LoadState.FAILED
            self._done.set()
        self._emit(LoadFailed(reason))
        return True


class PipelineService:
    """
    Façade over classification, conversion, extraction and playback.

    Responsibilities:
    - Route each load request to direct load, transcode or extraction
    - Serve frame sequences from the sequence cache when still valid
    - Attach concurrent requests for one source to a single job
    - Own one SequencePlayer per playback target, and close it when its
      frame directory is invalidated or purged

    Does NOT:
    - Render frames (that's the collaborator)
    - Retry failed loads
    """

    def __init__(
        self,
        config: ConfigService,
        classifier: ClassifierService,
        conversion: ConversionService,
        extraction: ExtractionService,
        cache_store: SequenceCacheStore,
    ):
        self.config = config
        self.classifier = classifier
        self.conversion = conversion
        self.extraction = extraction
        self.cache_store = cache_store
        self._requests: Dict[str, LoadRequest] = {}
        self._players: Dict[str, SequencePlayer] = {}
        self._lock = threading.Lock()
        self._route_locks: Dict[str, threading.Lock] = {}
        cache_store.add_invalidation_listener(self._on_sequence_invalidated)

    # ── loading ────────────────────────────────────────────────────────────
    def request_load(self, source_path, target: str = "default") -> LoadRequest:
        """Classify and load a source for a playback target.

        Returns immediately; observe the returned LoadRequest.
        """
        request = LoadRequest(str(source_path), target)
        with self._lock:
            self._requests[target] = request
            self._players.pop(target, None)

        threading.Thread(target=self._run, args=(request,), daemon=True).start()
        return request

    def _route_lock_for(self, source_path) -> threading.Lock:
        """Lock serializing routing decisions for one resolved source path."""
        with self._lock:
            return self._route_locks.setdefault(str(source_path), threading.Lock())

    def get_request(self, target: str) -> Optional[LoadRequest]:
        with self._lock:
            return self._requests.get(target)

    def list_requests(self) -> List[LoadRequest]:
        with self._lock:
            return list(self._requests.values())

    def cancel(self, source_path) -> bool:
        """Cancel every pending load and job for a source.

        Returns:
            True if anything was cancelled
        """
        resolved = str(Path(source_path).expanduser().resolve())
        cancelled = False

        reason = FailureReason(ErrorKind.PROCESS_CANCELLED, "Cancelled by request", JobStatus.CANCELLED)
        with self._route_lock_for(resolved):
            for request in self.list_requests():
                if request.done():
                    continue
                request_path = str(request.source.path) if request.source else request.source_path
                if request_path not in (resolved, str(source_path)):
                    continue
                request.cancel_requested = True
                if request.handle is None and request.reject(reason):
                    cancelled = True

            for handle in self.conversion.job_repo.get_by_source(resolved):
                runner = self.extraction if handle.job.kind == JobKind.ALPHA_EXTRACTION else self.conversion
                if runner.cancel(handle):
                    cancelled = True
        return cancelled

    def shutdown(self) -> None:
        """Cancel live jobs and drop players. Called at application teardown."""
        count = self.conversion.cancel_all() + self.extraction.cancel_all()
        if count:
            print(f"  → Cancelled {count} running job(s) at shutdown")
        with self._lock:
            self._players.clear()

    def _run(self, request: LoadRequest) -> None:
        try:
            self._load(request)
        except ClipCacheError as e:
            request.reject(FailureReason(e.kind, e.message))
        except Exception as e:
            request.reject(FailureReason(ErrorKind.PROCESS_FAILED, f"Unexpected error: {e}"))

    def _load(self, request: LoadRequest) -> None:
        request.set_state(LoadState.CLASSIFYING)
        try:
            source = self.classifier.describe(request.source_path)
        except SourceNotFound as e:
            request.reject(FailureReason(e.kind, e.message))
            return
        request.source = source

        if self.classifier.is_native(source.extension):
            request.set_state(LoadState.DIRECT_LOAD)
            request.resolve(DirectStream(source.path))
            return

        if not self.classifier.is_transcodable(source.extension):
            request.reject(FailureReason(
                ErrorKind.UNSUPPORTED_FORMAT,
                f"Unsupported format '{source.extension}': {source.path.name}",
            ))
            return

        route_lock = self._route_lock_for(source.path)

        # Cheap paths first: a running job or a valid cache needs no probe.
        with route_lock:
            if self._attach_existing(request, source) or self._serve_cached(request, source):
                return

        classification = self.classifier.classify_source(source)
        request.classification = classification
        source = classification.source

        with route_lock:
            if request.cancel_requested:
                return
            if self._attach_existing(request, source):
                return
            if classification.kind == ClassificationKind.NEEDS_ALPHA_EXTRACTION:
                if self._serve_cached(request, source):
                    return
                self._follow(request, self.extraction.extract(source), LoadState.EXTRACTING)
            elif classification.kind == ClassificationKind.NEEDS_TRANSCODE:
                reusable = self.conversion.reusable_output(source)
                if reusable is not None:
                    print(f"  → Reusing converted file {reusable.name}")
                    request.set_state(LoadState.CONVERTING)
                    request.resolve(DirectStream(reusable))
                    return
                self._follow(request, self.conversion.convert(source), LoadState.CONVERTING)
            else:
                request.reject(FailureReason(
                    ErrorKind.UNSUPPORTED_FORMAT,
                    f"Cannot handle {source.path.name} ({classification.kind.value})",
                ))

    def _attach_existing(self, request: LoadRequest, source: MediaSource) -> bool:
        handle = self.extraction.active_handle(source.path)
        if handle is not None:
            self._follow(request, handle, LoadState.EXTRACTING)
            return True
        handle = self.conversion.active_handle(source.path)
        if handle is not None:
            self._follow(request, handle, LoadState.CONVERTING)
            return True
        return False

    def _serve_cached(self, request: LoadRequest, source: MediaSource) -> bool:
        frame_directory = self.cache_store.frame_directory_for(source.path)
        if not self.cache_store.is_valid(source, frame_directory):
            return False
        print(f"  → Sequence cache hit: {source.path.name}")
        request.set_state(LoadState.EXTRACTING)
        request.resolve(self.cache_store.load_sequence(frame_directory))
        return True

    def _follow(self, request: LoadRequest, handle: JobHandle, state: LoadState) -> None:
        request.handle = handle
        request.set_state(state)
        handle.add_progress_listener(request.report_progress)
        handle.add_done_callback(lambda job: self._on_job_done(request, job))

    def _on_job_done(self, request: LoadRequest, job: ConversionJob) -> None:
        try:
            if job.status != JobStatus.SUCCEEDED:
                request.reject(FailureReason(
                    job.error_kind or ErrorKind.PROCESS_FAILED,
                    job.error or f"Job ended {job.status.value}",
                    job.status,
                ))
                return

            if job.kind == JobKind.STANDARD_TRANSCODE:
                if job.target_path.is_file():
                    request.resolve(DirectStream(job.target_path))
                    return
            else:
                entry = self.cache_store.get(job.target_path)
                sequence = self.cache_store.load_sequence(job.target_path) if entry else None
                if sequence is not None and sequence.frame_count > 0:
                    request.resolve(sequence)
                    return

            request.reject(FailureReason(
                ErrorKind.OUTPUT_MISSING_AFTER_SUCCESS,
                f"Output missing after successful job: {job.target_path}",
                job.status,
            ))
        except Exception as e:
            request.reject(FailureReason(ErrorKind.PROCESS_FAILED, f"Could not open output: {e}", job.status))

    def _on_sequence_invalidated(self, frame_directory: Path) -> None:
        """Retire players and READY assets whose frames are about to be deleted."""
        with self._lock:
            for request in self._requests.values():
                asset = request.asset
                if isinstance(asset, FrameSequence) and asset.frames and asset.frames[0].parent == frame_directory:
                    request.asset_invalidated = True
            stale = [t for t, p in self._players.items() if p.frame_directory == frame_directory]
            players = [self._players.pop(t) for t in stale]

        for player in players:
            player.close()
        if players:
            print(f"  → Closed {len(players)} player(s) on invalidated {frame_directory.name}")

    # ── playback ───────────────────────────────────────────────────────────
    def ready_asset(self, target: str) -> Asset:
        """The READY asset for a target.

        Raises:
            KeyError: If no request exists for the target
            ValueError: If the request is not READY
            CacheCorrupt: If the frames behind the asset were invalidated
        """
        request = self.get_request(target)
        if request is None:
            raise KeyError(target)
        if request.state != LoadState.READY:
            raise ValueError(f"Target '{target}' is {request.state.value}, not ready")
        if request.asset_invalidated:
            raise CacheCorrupt(
                f"Frames for target '{target}' were invalidated; load {request.source_path} again",
                request.source_path,
            )
        return request.asset

    def open_player(self, target: str) -> SequencePlayer:
        """Player for a target whose asset is a frame sequence.

        Raises:
            KeyError: If no request exists for the target
            ValueError: If not ready
            TypeError: If the asset is a direct stream (played by the
                playback layer, not from cached frames)
            CacheCorrupt: If the sequence was invalidated since it loaded
        """
        asset = self.ready_asset(target)
        if isinstance(asset, DirectStream):
            raise TypeError(f"Target '{target}' is a direct stream ({asset.path.name})")
        if not isinstance(asset, FrameSequence):
            raise TypeError(f"Unknown asset type for '{target}'")

        with self._lock:
            player = self._players.get(target)
            if player is None or player.sequence is not asset:
                player = SequencePlayer(
                    asset,
                    capacity=self.config.frame_cache_size,
                    loop=self.config.loop_playback,
                )
                self._players[target] = player
            return player

    def play(self, target: str) -> SequencePlayer:
        player = self.open_player(target)
        player.play()
        return player

    def pause(self, target: str) -> SequencePlayer:
        player = self.open_player(target)
        player.pause()
        return player

    def stop(self, target: str) -> SequencePlayer:
        player = self.open_player(target)
        player.stop()
        return player

    def seek(self, target: str, index: int) -> SequencePlayer:
        player = self.open_player(target)
        player.seek(index)
        return player

    def update(self, target: str) -> SequencePlayer:
        """Advance a target's cursor to the frame due now."""
        player = self.open_player(target)
        player.update()
        return player


def build_pipeline(
    config: Optional[ConfigService] = None,
    ffmpeg_path: Optional[str] = None,
    ffprobe_path: Optional[str] = None,
    popen: Callable[..., subprocess.Popen] = subprocess.Popen,
) -> PipelineService:
    """Construct the pipeline and its collaborators once, at startup."""
    config = config or ConfigService()
    cache_root = config.cache_dir
    tools_dir = cache_root / "tools"
    job_repo = JobRepository()
    cache_store = SequenceCacheStore(cache_root)
    return PipelineService(
        config=config,
        classifier=ClassifierService(config, probe_path=ffprobe_path, tools_dir=tools_dir),
        conversion=ConversionService(config, job_repo, tool_path=ffmpeg_path, tools_dir=tools_dir, popen=popen),
        extraction=ExtractionService(config, job_repo, cache_store, tool_path=ffmpeg_path, tools_dir=tools_dir, popen=popen),
        cache_store=cache_store,
    )
