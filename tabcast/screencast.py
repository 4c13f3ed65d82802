"""
Live screencast bridge: one instance per viewer connection.

The bridge follows whichever tab is active in a browser, keeps at most one
screencast attachment open and forwards frames to the viewer as
`{"type": "frame", "data", "w", "h"}` messages. Problems are reported as
`{"type": "status", "message"}` and never close the viewer connection.
"""
import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from . import config, metrics
from .cdp import CDPConnection, EventSubscription
from .errors import ProtocolError
from .logger import log
from .retry import run_periodic
from .tabs import resolve_active_tab


class BridgeState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclass
class Attachment:
    endpoint: str
    connection: CDPConnection
    frames: EventSubscription
    pump: Optional[asyncio.Task] = None

    @property
    def healthy(self) -> bool:
        return self.pump is not None and not self.pump.done()


class ScreencastBridge:
    def __init__(
        self,
        send: Callable[[Dict[str, Any]], Awaitable[None]],
        resolve: Callable[[str], Awaitable[str]] = resolve_active_tab,
        connect: Callable[..., Awaitable[CDPConnection]] = CDPConnection.open,
        poll_interval: float = config.TAB_POLL_INTERVAL_SEC,
        viewer_id: Optional[str] = None,
    ):
        self._send = send
        self._resolve = resolve
        self._connect = connect
        self._poll_interval = poll_interval
        self.viewer_id = viewer_id or uuid.uuid4().hex[:8]
        self.state = BridgeState.IDLE
        self._browser_ws: Optional[str] = None
        self._attachment: Optional[Attachment] = None
        self._watch_task: Optional[asyncio.Task] = None
        # Serializes attach/detach so two targets never stream at once
        self._lock = asyncio.Lock()
        metrics.BRIDGE_VIEWERS.inc()

    @property
    def current_endpoint(self) -> Optional[str]:
        return self._attachment.endpoint if self._attachment else None

    @property
    def browser_endpoint(self) -> Optional[str]:
        return self._browser_ws

    async def handle_message(self, msg: Any):
        if not isinstance(msg, dict) or msg.get("type") != "connect":
            return
        await self.connect(msg.get("wsBrowserUrl"))

    async def connect(self, browser_ws: Optional[str]):
        """Start following the active tab of `browser_ws`."""
        if self.state is BridgeState.CLOSED:
            return
        if not browser_ws:
            await self._status("Missing wsBrowserUrl for the session.")
            return

        await self._stop_watcher()
        if browser_ws != self._browser_ws:
            async with self._lock:
                await self._detach()
        self._browser_ws = browser_ws
        log("INFO", "bridge_connect", "Viewer selected a browser", viewer_id=self.viewer_id, browser_ws=browser_ws)

        try:
            await self.refresh()
        except Exception as e:
            log("WARN", "bridge_attach_failed", "Initial attach failed", viewer_id=self.viewer_id, error=str(e))
            await self._status(f"Error: {e}")

        self._watch_task = asyncio.create_task(
            run_periodic(self._poll_interval, self.refresh, on_error=self._on_watch_error)
        )

    async def refresh(self):
        """Re-resolve the active tab and re-attach if it changed or the stream died."""
        if self._browser_ws is None or self.state is BridgeState.CLOSED:
            return
        page_ws = await self._resolve(self._browser_ws)
        att = self._attachment
        if att is not None and att.endpoint == page_ws and att.healthy:
            return
        await self._switch_to(page_ws)

    async def close(self):
        """Stop watching and release the attachment. Safe to call on any exit path."""
        if self.state is BridgeState.CLOSED:
            return
        self.state = BridgeState.CLOSED
        await self._stop_watcher()
        async with self._lock:
            await self._detach()
        metrics.BRIDGE_VIEWERS.dec()
        log("INFO", "bridge_closed", "Viewer bridge closed", viewer_id=self.viewer_id)

    async def _switch_to(self, page_ws: str):
        async with self._lock:
            if self.state is BridgeState.CLOSED:
                return
            att = self._attachment
            if att is not None and att.endpoint == page_ws and att.healthy:
                return
            switching = att is not None
            await self._detach()

            self.state = BridgeState.CONNECTING
            await self._status("Connecting to the active tab...")
            try:
                self._attachment = await self._attach(page_ws)
            except (Exception, asyncio.CancelledError):
                if self.state is not BridgeState.CLOSED:
                    self.state = BridgeState.IDLE
                raise
            self.state = BridgeState.STREAMING
            if switching:
                metrics.TAB_SWITCHES.inc()
            log("INFO", "bridge_streaming", "Streaming active tab",
                viewer_id=self.viewer_id, page_ws=page_ws, switched=switching)
            await self._status("Live (active tab)")

    async def _attach(self, page_ws: str) -> Attachment:
        conn = await self._connect(page_ws, timeout=config.CDP_CALL_TIMEOUT_SEC)
        try:
            await conn.send("Page.enable")
            # Subscribe before starting so the first frame cannot be missed
            frames = conn.subscribe("Page.screencastFrame")
            await conn.send("Page.startScreencast", {
                "format": config.SCREENCAST_FORMAT,
                "quality": config.SCREENCAST_QUALITY,
                "everyNthFrame": 1,
            })
        except (Exception, asyncio.CancelledError):
            await conn.close()
            raise
        att = Attachment(endpoint=page_ws, connection=conn, frames=frames)
        att.pump = asyncio.create_task(self._pump(att))
        return att

    async def _pump(self, att: Attachment):
        # Ack each frame before reading the next; the browser stalls until acked
        try:
            async for params in att.frames:
                meta = params.get("metadata") or {}
                await self._send({
                    "type": "frame",
                    "data": params.get("data"),
                    "w": meta.get("deviceWidth"),
                    "h": meta.get("deviceHeight"),
                })
                metrics.FRAMES_FORWARDED.inc()
                await att.connection.send("Page.screencastFrameAck", {"sessionId": params.get("sessionId")})
        except ProtocolError as e:
            log("WARN", "bridge_stream_interrupted", "Screencast stream interrupted",
                viewer_id=self.viewer_id, page_ws=att.endpoint, error=str(e))
            await self._status(f"Stream interrupted: {e}")

    async def _detach(self):
        att, self._attachment = self._attachment, None
        if att is None:
            return
        try:
            if att.pump is not None:
                att.pump.cancel()
                await asyncio.gather(att.pump, return_exceptions=True)
            att.frames.cancel()
            if att.connection.connected:
                try:
                    await att.connection.send("Page.stopScreencast")
                except ProtocolError as e:
                    log("DEBUG", "bridge_stop_failed", "stopScreencast failed", page_ws=att.endpoint, error=str(e))
        finally:
            await att.connection.close()
        log("DEBUG", "bridge_detached", "Screencast attachment released", viewer_id=self.viewer_id, page_ws=att.endpoint)

    async def _stop_watcher(self):
        task, self._watch_task = self._watch_task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _on_watch_error(self, error: Exception):
        log("DEBUG", "bridge_watch_error", "Active-tab refresh failed", viewer_id=self.viewer_id, error=str(error))
        await self._status(f"Watcher: {error}")

    async def _status(self, message: str):
        await self._send({"type": "status", "message": message})
