# tabcast/tabs.py
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import aiohttp

from . import config
from .cdp import CDPConnection
from .errors import NoPagesError, ProtocolError, TabcastError
from .logger import log
from .probe import fetch_json, http_origin_from_ws

FOCUS_EXPRESSION = '({ visible: document.visibilityState === "visible", focus: document.hasFocus() })'


@dataclass
class PageTarget:
    """A page-type debugging target. Valid for one resolution pass only."""
    target_id: str
    url: str
    title: str
    ws_url: str

    def to_dict(self) -> dict:
        return {"id": self.target_id, "url": self.url, "title": self.title, "ws": self.ws_url}


@dataclass
class FocusState:
    visible: bool = False
    focus: bool = False


async def list_pages(
    browser_ws: str,
    timeout: float = config.TARGET_LIST_TIMEOUT_SEC,
    fetch: Optional[Callable[..., Awaitable[Any]]] = None,
) -> List[PageTarget]:
    """Page targets exposing a debugger URL, in the browser's list order."""
    fetch = fetch or fetch_json
    url = f"{http_origin_from_ws(browser_ws)}/json/list"
    try:
        entries = await fetch(url, timeout)
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
        raise ProtocolError(f"target list unavailable at {url}: {e or type(e).__name__}") from e

    pages = []
    for entry in entries if isinstance(entries, list) else []:
        if not isinstance(entry, dict) or entry.get("type") != "page" or not entry.get("webSocketDebuggerUrl"):
            continue
        pages.append(PageTarget(
            target_id=entry.get("id", ""),
            url=entry.get("url", ""),
            title=entry.get("title") or "",
            ws_url=entry["webSocketDebuggerUrl"],
        ))
    return pages


async def probe_focus(
    page_ws: str,
    timeout: float = config.CDP_CALL_TIMEOUT_SEC,
    connect: Callable[..., Awaitable[CDPConnection]] = CDPConnection.open,
) -> FocusState:
    """
    Ask one page whether it is visible and focused.
    Any failure reads as neither, so one broken tab cannot block selection.
    """
    conn = None
    try:
        conn = await connect(page_ws, timeout=timeout)
        await conn.send("Runtime.enable")
        res = await conn.send("Runtime.evaluate", {"expression": FOCUS_EXPRESSION, "returnByValue": True})
        value = (res.get("result") or {}).get("value") or {}
        return FocusState(visible=bool(value.get("visible")), focus=bool(value.get("focus")))
    except (TabcastError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        log("DEBUG", "tabs_probe_failed", "Focus probe failed", page_ws=page_ws, error=str(e))
        return FocusState()
    finally:
        if conn is not None:
            await conn.close()


def select_active_page(pages: Sequence[PageTarget], states: Sequence[FocusState]) -> PageTarget:
    """Focused beats visible beats first-in-list."""
    if not pages:
        raise NoPagesError("No page-type target available")
    for page, state in zip(pages, states):
        if state.focus:
            return page
    for page, state in zip(pages, states):
        if state.visible:
            return page
    return pages[0]


async def resolve_active_tab(
    browser_ws: str,
    list_fn: Callable[[str], Awaitable[List[PageTarget]]] = list_pages,
    probe_fn: Callable[[str], Awaitable[FocusState]] = probe_focus,
) -> str:
    """
    Return the page-level debugger URL of the tab most likely in front of the user.

    Raises NoPagesError when the browser has no page target, ProtocolError when
    the target list cannot be fetched.
    """
    pages = await list_fn(browser_ws)
    if not pages:
        raise NoPagesError("No page-type target available")
    states = await asyncio.gather(*(probe_fn(p.ws_url) for p in pages))
    active = select_active_page(pages, states)
    log("DEBUG", "tabs_resolved", "Active tab resolved",
        browser_ws=browser_ws, target_id=active.target_id, url=active.url, candidates=len(pages))
    return active.ws_url
