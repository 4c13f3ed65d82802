# tabcast/discovery.py
import asyncio
import re
import shutil
import sys
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, List, Optional

import aiohttp

from .logger import log
from .probe import fetch_json

BROWSER_CMD_RE = re.compile(r"(chrome|chromium|brave|edge|msedge|electron|headless|arc|opera)", re.IGNORECASE)
DISCOVERY_PROBE_TIMEOUT_SEC = 0.5


@dataclass
class ListeningPort:
    pid: int
    cmd: str
    port: int


@dataclass
class DiscoveredBrowser:
    pid: int
    port: int
    cmd: str
    browser: str
    ws_browser_url: str

    def to_dict(self) -> dict:
        d = asdict(self)
        d["label"] = f"{self.browser} (pid:{self.pid}, port:{self.port})"
        return d


def parse_lsof(output: str) -> List[ListeningPort]:
    """
    Parse `lsof -F pcn` output: p<pid>, c<command>, n<host:port> records.
    """
    rows = []
    pid: Optional[int] = None
    cmd: Optional[str] = None
    for line in output.splitlines():
        if not line:
            continue
        tag, val = line[0], line[1:]
        if tag == "p":
            pid = int(val) if val.isdigit() else None
        elif tag == "c":
            cmd = val
        elif tag == "n":
            m = re.search(r":(\d+)$", val)
            if m and pid and cmd:
                rows.append(ListeningPort(pid=pid, cmd=cmd, port=int(m.group(1))))
    return rows


async def list_listening_ports() -> List[ListeningPort]:
    if sys.platform not in ("darwin", "linux") or shutil.which("lsof") is None:
        log("DEBUG", "discovery_unsupported", "lsof not available; skipping discovery", platform=sys.platform)
        return []
    proc = await asyncio.create_subprocess_exec(
        "lsof", "-nP", "-iTCP", "-sTCP:LISTEN", "-F", "pcn",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    stdout, _ = await proc.communicate()
    return parse_lsof(stdout.decode("utf-8", errors="replace"))


async def discover_browsers(
    list_ports: Callable[[], Awaitable[List[ListeningPort]]] = list_listening_ports,
    fetch: Callable[..., Awaitable[Any]] = fetch_json,
) -> List[DiscoveredBrowser]:
    """
    Find local browsers exposing a debugging endpoint, whoever launched them.
    """
    candidates = [p for p in await list_ports() if BROWSER_CMD_RE.search(p.cmd)]

    async def probe(c: ListeningPort) -> Optional[DiscoveredBrowser]:
        try:
            j = await fetch(f"http://127.0.0.1:{c.port}/json/version", DISCOVERY_PROBE_TIMEOUT_SEC)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError):
            return None
        if not isinstance(j, dict) or not j.get("webSocketDebuggerUrl"):
            return None
        return DiscoveredBrowser(
            pid=c.pid,
            port=c.port,
            cmd=c.cmd,
            browser=j.get("Browser") or j.get("User-Agent") or c.cmd,
            ws_browser_url=j["webSocketDebuggerUrl"],
        )

    found = await asyncio.gather(*(probe(c) for c in candidates))
    seen = set()
    result = []
    for b in found:
        if b is None or b.ws_browser_url in seen:
            continue
        seen.add(b.ws_browser_url)
        result.append(b)
    log("DEBUG", "discovery_done", "Browser discovery finished", candidates=len(candidates), found=len(result))
    return result
