"""WebSocket service for real-time load updates."""

import asyncio
from typing import Dict, Optional, Set

from fastapi import WebSocket

from clipcache.models.domain import DirectStream
from clipcache.models.dto import ProgressUpdate
from clipcache.services.pipeline_service import (
    LoadEvent,
    LoadFailed,
    LoadProgress,
    LoadReady,
    LoadRequest,
)


class WebSocketService:
    """
    Service for WebSocket connection management and broadcasting.

    Responsibilities:
    - Manage WebSocket connections per playback target
    - Forward load request events to connected clients
    - Handle connection lifecycle (connect, disconnect, cleanup)

    Does NOT:
    - Handle WebSocket endpoint routing (that's websocket.py)
    - Run or supervise jobs (that's the pipeline)
    """

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self.progress_cache: Dict[str, dict] = {}
        self.event_loop: Optional[asyncio.AbstractEventLoop] = None

    def set_event_loop(self, loop: asyncio.AbstractEventLoop):
        """Store the server loop for thread-safe updates."""
        self.event_loop = loop

    async def connect(self, websocket: WebSocket, target: str):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        if target not in self.active_connections:
            self.active_connections[target] = set()
        self.active_connections[target].add(websocket)

    def disconnect(self, websocket: WebSocket, target: str):
        """Remove a WebSocket connection."""
        if target in self.active_connections:
            self.active_connections[target].discard(websocket)
            if not self.active_connections[target]:
                del self.active_connections[target]

    async def send_to_target(self, target: str, message: dict):
        """Send a message to all connections for a target."""
        if target in self.active_connections:
            disconnected = set()
            for connection in list(self.active_connections[target]):
                try:
                    await connection.send_json(message)
                except Exception:
                    disconnected.add(connection)

            for conn in disconnected:
                self.active_connections[target].discard(conn)

    def get_cached_progress(self, target: str) -> dict:
        """Get the last message sent for a target."""
        return self.progress_cache.get(target, {})

    def track(self, request: LoadRequest):
        """Forward every event of a load request to its target's clients."""
        request.subscribe(lambda event: self.publish(request, event))

    def publish(self, request: LoadRequest, event: LoadEvent):
        """Thread-safe: called from job supervisor threads."""
        message = build_message(request, event)
        self.progress_cache[request.target] = message

        if self.event_loop is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(
                self.send_to_target(request.target, message),
                self.event_loop,
            )
        except RuntimeError:
            pass


def build_message(request: LoadRequest, event: LoadEvent) -> dict:
    """WebSocket payload for one load event."""
    message = None
    if isinstance(event, LoadProgress):
        message = "Working"
        kind = "progress"
    elif isinstance(event, LoadReady):
        kind = "ready"
        if isinstance(event.asset, DirectStream):
            message = f"Stream ready: {event.asset.path}"
        else:
            message = f"{event.asset.frame_count} frames ready"
    elif isinstance(event, LoadFailed):
        kind = "failed"
        message = f"{event.reason.kind.value}: {event.reason.message}"
    else:
        kind = "unknown"

    return ProgressUpdate(
        type=kind,
        target=request.target,
        state=request.state,
        progress=request.progress,
        message=message,
    ).model_dump(mode="json")
