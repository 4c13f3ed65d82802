# tabcast_api/routes/bridge_routes.py
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from tabcast.screencast import ScreencastBridge
from tabcast.logger import log
import asyncio
import json

router = APIRouter()

@router.websocket("/bridge")
async def bridge_websocket(websocket: WebSocket):
    """
    Viewer bridge. The client sends {"type": "connect", "wsBrowserUrl": ...};
    the server streams {"type": "frame", ...} and {"type": "status", ...} messages
    for the active tab of that browser until the client goes away.
    """
    await websocket.accept()
    send_lock = asyncio.Lock()

    async def send(message: dict):
        async with send_lock:
            if websocket.application_state != WebSocketState.CONNECTED:
                return
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                log("DEBUG", "bridge_send_failed", "Viewer no longer reachable", error=str(e))

    bridge = ScreencastBridge(send)
    log("INFO", "bridge_viewer_connected", "Viewer WebSocket connected", viewer_id=bridge.viewer_id)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                await send({"type": "status", "message": "Invalid message: expected text"})
                continue
            try:
                msg = json.loads(raw)
            except ValueError:
                await send({"type": "status", "message": "Invalid message: expected JSON"})
                continue
            await bridge.handle_message(msg)
    except WebSocketDisconnect:
        log("INFO", "bridge_viewer_disconnected", "Viewer WebSocket disconnected", viewer_id=bridge.viewer_id)
    finally:
        await bridge.close()
