# tabcast/launcher.py
import asyncio
import traceback
from typing import Any, Callable, Iterable, Optional

from playwright.async_api import async_playwright
from playwright_stealth import Stealth

from . import config, metrics
from .errors import LaunchError
from .logger import log
from .ports import ensure_port_available, find_available_port
from .probe import probe_endpoint
from .profile import LaunchOptions
from .session import BrowserHandle, BrowserSession


def session_id_from_endpoint(ws_url: str) -> str:
    """ws://127.0.0.1:9222/devtools/browser/<uuid> -> <uuid>"""
    sid = ws_url.rstrip("/").rsplit("/", 1)[-1]
    if not sid:
        raise LaunchError(f"Cannot derive a session id from {ws_url!r}")
    return sid


def _has_debugger_url(descriptor: Any) -> bool:
    return isinstance(descriptor, dict) and bool(descriptor.get("webSocketDebuggerUrl"))


class BrowserLauncher:
    """
    Starts one Chromium process per call with a fixed argument profile and waits
    for its remote-debugging endpoint. A failed launch never leaves a process behind.
    """

    def __init__(
        self,
        playwright_factory: Optional[Callable[[], Any]] = None,
        prober: Callable[..., Any] = probe_endpoint,
        host: str = config.CDP_HOST,
    ):
        self._playwright_factory = playwright_factory or async_playwright
        self._prober = prober
        self._host = host

    def allocate_port(self, options: LaunchOptions, reserved_ports: Iterable[int] = ()) -> int:
        """Pick the debugging port for a launch. Raises PortConflictError."""
        reserved = set(reserved_ports)
        try:
            if options.port:
                return ensure_port_available(options.port, reserved)
            return find_available_port(reserved)
        except LaunchError as e:
            log("ERROR", "launch_port_conflict", "No usable debugging port", requested=options.port, error=str(e))
            metrics.LAUNCH_FAILURES.labels(error=type(e).__name__).inc()
            raise

    async def launch(
        self,
        options: LaunchOptions,
        reserved_ports: Iterable[int] = (),
        port: Optional[int] = None,
    ) -> BrowserSession:
        if port is None:
            port = self.allocate_port(options, reserved_ports)

        args = options.get_args(port)
        log("INFO", "launch_start", "Launching Chromium",
            headless=options.headless, port=port, exec_path=options.executable_path, args=args)

        handle = None
        try:
            handle = BrowserHandle(await self._playwright_factory().start())
            handle.browser = await handle.playwright.chromium.launch(
                headless=options.headless,
                executable_path=options.executable_path,
                args=args,
            )
            handle.context = await handle.browser.new_context(
                viewport={"width": options.window.width, "height": options.window.height},
                locale=options.locale,
                timezone_id=options.timezone,
            )
            if options.stealth:
                await Stealth().apply_stealth_async(handle.context)

            # Some builds only open the debugging port once a page exists
            await self._open_default_page(handle)

            descriptor = await self._prober(
                f"http://{self._host}:{port}/json/version",
                _has_debugger_url,
                max_attempts=config.PROBE_MAX_ATTEMPTS,
                interval_ms=config.PROBE_INTERVAL_MS,
                is_alive=lambda: handle.is_alive,
            )
            endpoint = descriptor["webSocketDebuggerUrl"]
            sid = session_id_from_endpoint(endpoint)
        except LaunchError as e:
            await self._abort(handle, port, e)
            raise
        except Exception as e:
            await self._abort(handle, port, e)
            raise LaunchError(f"browser launch failed: {e}") from e
        except asyncio.CancelledError:
            if handle is not None:
                await handle.close()
            raise

        log("INFO", "launch_ready", "Chromium debugging endpoint ready", session_id=sid, port=port, endpoint=endpoint)
        return BrowserSession(id=sid, port=port, debug_endpoint=endpoint, handle=handle)

    async def _open_default_page(self, handle: BrowserHandle):
        try:
            await handle.context.new_page()
        except Exception as e:
            log("WARN", "launch_default_page_failed", "Could not open default page", error=str(e))

    async def _abort(self, handle: Optional[BrowserHandle], port: int, error: Exception):
        log("ERROR", "launch_failed", "Browser launch failed; terminating process",
            port=port, error=str(error), error_type=type(error).__name__, tb=traceback.format_exc())
        metrics.LAUNCH_FAILURES.labels(error=type(error).__name__).inc()
        if handle is not None:
            await handle.close()
