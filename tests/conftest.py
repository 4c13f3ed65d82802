import asyncio
import uuid
from urllib.parse import urlparse

import pytest

from tabcast.cdp import EventSubscription
from tabcast.errors import ProtocolError
from tabcast.launcher import BrowserLauncher


# ---------------------------------------------------------------------------
# Fake Playwright driver
# ---------------------------------------------------------------------------

class DummyPage:
    pass


class DummyContext:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.pages = []

    async def new_page(self):
        page = DummyPage()
        self.pages.append(page)
        return page


class DummyBrowser:
    def __init__(self, **launch_kwargs):
        self.launch_kwargs = launch_kwargs
        self.connected = True
        self.close_calls = 0
        self.contexts = []
        self.listeners = {}

    def is_connected(self):
        return self.connected

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def _disconnect(self):
        if not self.connected:
            return
        self.connected = False
        for handler in self.listeners.get("disconnected", []):
            handler(self)

    def crash(self):
        """Simulate the browser process exiting on its own."""
        self._disconnect()

    async def new_context(self, **kwargs):
        ctx = DummyContext(**kwargs)
        self.contexts.append(ctx)
        return ctx

    async def close(self):
        self.close_calls += 1
        self._disconnect()


class DummyChromium:
    def __init__(self, registry):
        self._registry = registry

    async def launch(self, **kwargs):
        browser = DummyBrowser(**kwargs)
        self._registry.append(browser)
        return browser


class DummyPlaywright:
    def __init__(self, registry):
        self.chromium = DummyChromium(registry)
        self.stopped = False

    async def stop(self):
        self.stopped = True


class DummyPlaywrightFactory:
    """Stands in for `async_playwright`: call it, then `await .start()`."""

    def __init__(self):
        self.browsers = []
        self.drivers = []

    def __call__(self):
        return self

    async def start(self):
        pw = DummyPlaywright(self.browsers)
        self.drivers.append(pw)
        return pw


def port_of(url):
    return urlparse(url).port


async def ready_prober(url, predicate, max_attempts=None, interval_ms=None, is_alive=None):
    descriptor = {"webSocketDebuggerUrl": f"ws://127.0.0.1:{port_of(url)}/devtools/browser/{uuid.uuid4()}"}
    assert predicate(descriptor)
    return descriptor


@pytest.fixture
def free_ports(monkeypatch):
    """Pretend every port is bindable so tests don't depend on the host."""
    monkeypatch.setattr("tabcast.ports.is_port_available", lambda port, host=None: True)


@pytest.fixture
def playwright_factory():
    return DummyPlaywrightFactory()


@pytest.fixture
def launcher(playwright_factory, free_ports):
    return BrowserLauncher(playwright_factory=playwright_factory, prober=ready_prober)


# ---------------------------------------------------------------------------
# Fake CDP connection
# ---------------------------------------------------------------------------

class FakeCDPConnection:
    def __init__(self, ws_url, journal=None, responses=None):
        self.ws_url = ws_url
        self.sent = []
        self.journal = journal if journal is not None else []
        self.responses = responses or {}
        self.subscriptions = []
        self.close_calls = 0
        self._closed = False

    @property
    def connected(self):
        return not self._closed

    async def send(self, method, params=None, timeout=None):
        if self._closed:
            raise ProtocolError(f"{method}: connection closed")
        self.sent.append((method, params))
        self.journal.append(("cdp", self.ws_url, method, params))
        response = self.responses.get(method, {})
        if isinstance(response, Exception):
            raise response
        return response

    def subscribe(self, method):
        sub = EventSubscription(self, method)
        self.subscriptions.append(sub)
        return sub

    def _unsubscribe(self, sub):
        if sub in self.subscriptions:
            self.subscriptions.remove(sub)

    def emit(self, method, params):
        for sub in list(self.subscriptions):
            if sub.method == method:
                sub._push(params)

    def drop(self):
        """Simulate the browser closing the socket."""
        self._closed = True
        for sub in list(self.subscriptions):
            sub._close(ProtocolError("connection closed by browser"))
        self.subscriptions.clear()

    def methods(self):
        return [m for m, _ in self.sent]

    async def close(self):
        self.close_calls += 1
        if not self._closed:
            self._closed = True
            for sub in list(self.subscriptions):
                sub._close()
            self.subscriptions.clear()


class FakeConnector:
    """Replacement for CDPConnection.open that records every connection."""

    def __init__(self, journal=None, fail=None):
        self.connections = []
        self.journal = journal if journal is not None else []
        self.fail = fail or set()

    async def __call__(self, ws_url, timeout=None):
        if ws_url in self.fail:
            raise ProtocolError(f"cannot connect to {ws_url}")
        conn = FakeCDPConnection(ws_url, journal=self.journal)
        self.connections.append(conn)
        return conn

    def for_endpoint(self, ws_url):
        return [c for c in self.connections if c.ws_url == ws_url]


async def wait_until(predicate, timeout=2.0, interval=0.005):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
