"""
Minimal Chrome DevTools Protocol client over aiohttp WebSockets.

One CDPConnection talks to exactly one debugging endpoint (browser- or
page-level). Commands are correlated by message id and always carry a timeout;
events are delivered to per-method subscriptions that are consumed with
`async for` and stopped with `cancel()`.
"""
import asyncio
import itertools
import json
from typing import Any, Dict, List, Optional

import aiohttp

from . import config
from .errors import ProtocolError
from .logger import log

_CLOSED = object()


class EventSubscription:
    """
    Queue of params for one CDP event method.

    Iteration ends when the subscription is cancelled; it raises ProtocolError
    if the underlying connection dropped.
    """

    def __init__(self, connection: "CDPConnection", method: str):
        self.method = method
        self._connection = connection
        self._queue: asyncio.Queue = asyncio.Queue()
        self._error: Optional[Exception] = None
        self._cancelled = False

    def _push(self, params: Dict[str, Any]):
        if not self._cancelled:
            self._queue.put_nowait(params)

    def _close(self, error: Optional[Exception] = None):
        if self._cancelled:
            return
        self._error = error
        self._cancelled = True
        self._queue.put_nowait(_CLOSED)

    def cancel(self):
        self._connection._unsubscribe(self)
        self._close()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the sentinel for any other reader
            self._queue.put_nowait(_CLOSED)
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        return item


class CDPConnection:
    def __init__(self, ws_url: str, timeout: float = config.CDP_CALL_TIMEOUT_SEC):
        self.ws_url = ws_url
        self.timeout = timeout
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._subscriptions: Dict[str, List[EventSubscription]] = {}
        self._reader: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    async def open(cls, ws_url: str, timeout: float = config.CDP_CALL_TIMEOUT_SEC) -> "CDPConnection":
        conn = cls(ws_url, timeout=timeout)
        await conn.connect()
        return conn

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed and not self._closed

    async def connect(self):
        self._http = aiohttp.ClientSession()
        try:
            # max_msg_size=0: screencast frames can exceed aiohttp's 4MB default
            self._ws = await asyncio.wait_for(
                self._http.ws_connect(self.ws_url, max_msg_size=0),
                timeout=self.timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await self._http.close()
            self._http = None
            raise ProtocolError(f"cannot connect to {self.ws_url}: {e or type(e).__name__}") from e
        self._reader = asyncio.create_task(self._read_loop())
        log("DEBUG", "cdp_connected", "CDP connection open", ws_url=self.ws_url)

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Send a command and return its `result`.
        Raises ProtocolError on error responses, timeouts and closed connections.
        """
        if not self.connected:
            raise ProtocolError(f"{method}: connection closed")

        msg_id = next(self._ids)
        payload: Dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            payload["params"] = params

        fut = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        try:
            await self._ws.send_str(json.dumps(payload))
            response = await asyncio.wait_for(fut, timeout=timeout or self.timeout)
        except asyncio.TimeoutError as e:
            raise ProtocolError(f"{method} timed out") from e
        except (aiohttp.ClientError, ConnectionError) as e:
            raise ProtocolError(f"{method} failed: {e}") from e
        finally:
            self._pending.pop(msg_id, None)

        if "error" in response:
            err = response["error"]
            raise ProtocolError(f"{method}: {err.get('message', err)}")
        return response.get("result", {})

    def subscribe(self, method: str) -> EventSubscription:
        sub = EventSubscription(self, method)
        self._subscriptions.setdefault(method, []).append(sub)
        return sub

    def _unsubscribe(self, sub: EventSubscription):
        subs = self._subscriptions.get(sub.method)
        if subs and sub in subs:
            subs.remove(sub)

    async def _read_loop(self):
        error: Optional[Exception] = None
        try:
            async for msg in self._ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    if msg.type == aiohttp.WSMsgType.ERROR:
                        error = ProtocolError(f"websocket error: {self._ws.exception()}")
                        break
                    continue
                try:
                    data = json.loads(msg.data)
                except ValueError:
                    log("WARN", "cdp_bad_message", "Discarding non-JSON CDP message", ws_url=self.ws_url)
                    continue

                if "id" in data:
                    fut = self._pending.get(data["id"])
                    if fut is not None and not fut.done():
                        fut.set_result(data)
                    continue

                method = data.get("method")
                for sub in list(self._subscriptions.get(method, ())):
                    sub._push(data.get("params", {}))
        except aiohttp.ClientError as e:
            error = ProtocolError(f"connection lost: {e}")
        finally:
            if error is None and not self._closed:
                error = ProtocolError("connection closed by browser")
            self._fail_all(error)

    def _fail_all(self, error: Optional[Exception]):
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(error or ProtocolError("connection closed"))
        self._pending.clear()
        for subs in self._subscriptions.values():
            for sub in subs:
                sub._close(error)
        self._subscriptions.clear()

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self._fail_all(None)
        if self._ws is not None:
            try:
                await self._ws.close()
            except (aiohttp.ClientError, OSError) as e:
                log("DEBUG", "cdp_close_error", "Error while closing CDP websocket", error=str(e))
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
        if self._http is not None:
            await self._http.close()
        log("DEBUG", "cdp_closed", "CDP connection closed", ws_url=self.ws_url)

    async def __aenter__(self):
        if self._ws is None:
            await self.connect()
        return self

    async def __aexit__(self, *exc):
        await self.close()
