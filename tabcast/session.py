"""Browser session: owns one launched browser process and its expiry timer."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .logger import log


class BrowserHandle:
    """Exclusive ownership of a Playwright driver, browser and default context."""

    def __init__(self, playwright: Any, browser: Any = None, context: Any = None) -> None:
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_alive(self) -> bool:
        return not self._closed and self.browser is not None and self.browser.is_connected()

    async def close(self) -> None:
        """Close the browser process and stop the driver. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self.browser is not None:
            try:
                await self.browser.close()
            except Exception as e:
                log("WARN", "session_browser_close_err", "Error while closing browser", error=str(e))
            self.browser = None
            self.context = None
        if self.playwright is not None:
            try:
                await self.playwright.stop()
            except Exception as e:
                log("WARN", "session_playwright_stop_err", "Error while stopping playwright", error=str(e))
            self.playwright = None


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class BrowserSession:
    """A launched browser plus its debugging endpoint and lifetime policy."""

    id: str
    port: int
    debug_endpoint: str
    handle: BrowserHandle = field(repr=False)
    created_at: float = field(default_factory=time.time)
    expires_at: Optional[float] = None
    expiry_task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_alive(self) -> bool:
        return self.handle.is_alive

    def summary(self) -> dict:
        return {
            "id": self.id,
            "port": self.port,
            "endpoint": self.debug_endpoint,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
        }

    def cancel_expiry(self) -> None:
        task = self.expiry_task
        self.expiry_task = None
        # The timer may be the task running this teardown; never cancel ourselves
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def shutdown(self) -> None:
        self.cancel_expiry()
        await self.handle.close()
