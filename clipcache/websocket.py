"""WebSocket handlers for real-time load updates."""

import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

router = APIRouter()


@router.websocket("/ws/{target}")
async def websocket_endpoint(websocket: WebSocket, target: str):
    """WebSocket endpoint for load progress of one playback target."""
    service = websocket.app.state.websocket_service
    await service.connect(websocket, target)

    try:
        cached = service.get_cached_progress(target)
        if cached:
            await websocket.send_json(cached)

        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=30.0
                )

                try:
                    message = json.loads(data)
                    if message.get("type") == "ping":
                        await websocket.send_json({"type": "pong"})
                except json.JSONDecodeError:
                    pass

            except asyncio.TimeoutError:
                try:
                    await websocket.send_json({"type": "ping"})
                except Exception:
                    break

    except WebSocketDisconnect:
        pass
    except Exception as e:
        print(f"WebSocket error: {e}")
    finally:
        service.disconnect(websocket, target)
