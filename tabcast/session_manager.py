"""Session registry: the in-memory table of live browser sessions."""

from __future__ import annotations

import asyncio
import time
from typing import Dict, List, Optional, Set

from . import metrics
from .errors import LaunchError, SessionNotFoundError
from .launcher import BrowserLauncher
from .logger import log
from .profile import LaunchOptions
from .session import BrowserSession


class SessionManager:
    """
    Owns every BrowserSession created by this process.

    All table mutations are plain dict operations with no await in between,
    so interleaved tasks never see a session half-inserted or half-removed.
    """

    def __init__(self, launcher: Optional[BrowserLauncher] = None) -> None:
        self._launcher = launcher if launcher is not None else BrowserLauncher()
        self._sessions: Dict[str, BrowserSession] = {}
        self._pending_ports: Set[int] = set()
        self._crash_tasks: Set[asyncio.Task] = set()

    def _reserved_ports(self) -> Set[int]:
        return {s.port for s in self._sessions.values()} | self._pending_ports

    async def create(self, options: Optional[LaunchOptions] = None) -> BrowserSession:
        """Launch a browser, register it and arm its expiry timer.

        Raises:
            LaunchError (or a subclass) if the browser could not be started.
        """
        options = options if options is not None else LaunchOptions()
        # Reserve before the first await so concurrent creates never share a port
        port = self._launcher.allocate_port(options, self._reserved_ports())
        self._pending_ports.add(port)
        try:
            session = await self._launcher.launch(options, port=port)
        finally:
            self._pending_ports.discard(port)

        if session.id in self._sessions:
            await session.shutdown()
            raise LaunchError(f"Session '{session.id}' already exists")

        lifetime = options.lifetime
        if lifetime is not None:
            session.expires_at = time.time() + lifetime
            session.expiry_task = asyncio.create_task(self._expire_after(session.id, lifetime))
        self._sessions[session.id] = session
        self._watch_disconnect(session)

        metrics.SESSIONS_CREATED.inc()
        metrics.SESSIONS_ACTIVE.set(len(self._sessions))
        log("INFO", "registry_session_created", "Session registered",
            session_id=session.id, port=session.port, lifetime=lifetime)
        return session

    def get(self, session_id: str) -> Optional[BrowserSession]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> BrowserSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"No session named '{session_id}'")
        return session

    def list(self) -> List[dict]:
        return [s.summary() for s in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)

    async def destroy(self, session_id: str, reason: str = "deleted") -> bool:
        """Tear a session down. Returns False if it was not registered.

        The pop is the claim: whichever caller removes the entry runs the
        teardown, every other caller sees False.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            log("DEBUG", "registry_destroy_missing", "Session not registered", session_id=session_id)
            return False
        metrics.SESSIONS_ACTIVE.set(len(self._sessions))

        session.cancel_expiry()
        log("INFO", "registry_session_destroying", "Destroying session", session_id=session_id, reason=reason)
        await session.handle.close()
        metrics.SESSIONS_DESTROYED.labels(reason=reason).inc()
        log("INFO", "registry_session_destroyed", "Session destroyed", session_id=session_id, reason=reason)
        return True

    async def destroy_all(self) -> None:
        """Best-effort teardown of every session. Used during process shutdown."""
        ids = list(self._sessions)
        log("INFO", "registry_destroy_all", "Destroying all sessions", count=len(ids))
        for sid in ids:
            try:
                await self.destroy(sid, reason="shutdown")
            except Exception as e:
                log("ERROR", "registry_destroy_failed", "Session teardown failed", session_id=sid, error=str(e))

    def _watch_disconnect(self, session: BrowserSession) -> None:
        browser = session.handle.browser
        if browser is None:
            return
        browser.on("disconnected", lambda _: self._on_disconnected(session))
        if not browser.is_connected():
            self._on_disconnected(session)

    def _on_disconnected(self, session: BrowserSession) -> None:
        # Fired by our own close too; only an unexpected exit deregisters
        if session.handle.closed or self._sessions.get(session.id) is not session:
            return
        log("WARN", "registry_browser_disconnected", "Browser exited unexpectedly",
            session_id=session.id, port=session.port)
        task = asyncio.create_task(self.destroy(session.id, reason="crashed"))
        self._crash_tasks.add(task)
        task.add_done_callback(self._crash_tasks.discard)

    async def _expire_after(self, session_id: str, lifetime: float) -> None:
        await asyncio.sleep(lifetime)
        log("INFO", "registry_session_expired", "Session lifetime elapsed", session_id=session_id)
        await self.destroy(session_id, reason="expired")
