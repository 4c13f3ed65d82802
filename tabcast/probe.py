import asyncio
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import aiohttp

from . import config
from .errors import ProcessExitedError
from .logger import log
from .retry import poll


def http_origin_from_ws(ws_url: str) -> str:
    """ws://host:port/devtools/... -> http://host:port"""
    u = urlparse(ws_url)
    proto = "https" if u.scheme == "wss" else "http"
    return f"{proto}://{u.netloc}"


async def fetch_json(url: str, timeout: float, session: Optional[aiohttp.ClientSession] = None) -> Any:
    """
    GET `url` and decode its JSON body, failing after `timeout` seconds.
    Non-2xx responses raise aiohttp.ClientResponseError.
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    if session is None:
        async with aiohttp.ClientSession() as s:
            return await fetch_json(url, timeout, session=s)
    async with session.get(url, timeout=client_timeout) as resp:
        resp.raise_for_status()
        return await resp.json(content_type=None)


async def probe_endpoint(
    url: str,
    predicate: Callable[[Any], bool],
    max_attempts: int = config.PROBE_MAX_ATTEMPTS,
    interval_ms: int = config.PROBE_INTERVAL_MS,
    is_alive: Optional[Callable[[], bool]] = None,
    request_timeout: float = config.PROBE_REQUEST_TIMEOUT_SEC,
) -> Any:
    """
    Poll a JSON endpoint until `predicate(descriptor)` holds.

    Returns the first descriptor that satisfies the predicate.
    Raises ProcessExitedError as soon as `is_alive()` reports the process gone,
    ProbeTimeoutError when the attempt budget is exhausted.
    """
    async with aiohttp.ClientSession() as session:

        async def attempt(i: int):
            if is_alive is not None and not is_alive():
                log("WARN", "probe_process_exited", "Process exited before endpoint was ready", url=url, attempt=i)
                raise ProcessExitedError(f"process exited before {url} became ready")
            try:
                descriptor = await fetch_json(url, request_timeout, session=session)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                log("DEBUG", "probe_attempt_failed", "Endpoint not reachable yet", url=url, attempt=i, error=str(e))
                return None
            if predicate(descriptor):
                log("DEBUG", "probe_ready", "Endpoint ready", url=url, attempts=i + 1)
                return descriptor
            return None

        return await poll(attempt, max_attempts, interval_ms / 1000.0, what=url)
