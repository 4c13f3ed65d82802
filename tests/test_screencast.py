import asyncio

import pytest

from tabcast.errors import NoPagesError
from tabcast.screencast import BridgeState, ScreencastBridge

from conftest import FakeConnector, wait_until

BROWSER_WS = "ws://127.0.0.1:9222/devtools/browser/b1"
PAGE_A = "ws://127.0.0.1:9222/devtools/page/A"
PAGE_B = "ws://127.0.0.1:9222/devtools/page/B"


class Viewer:
    def __init__(self, journal):
        self.journal = journal
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)
        self.journal.append(("viewer", message))

    def frames(self):
        return [m for m in self.messages if m["type"] == "frame"]

    def statuses(self):
        return [m["message"] for m in self.messages if m["type"] == "status"]


class Resolver:
    def __init__(self, endpoint):
        self.endpoint = endpoint
        self.calls = 0

    async def __call__(self, browser_ws):
        self.calls += 1
        if isinstance(self.endpoint, Exception):
            raise self.endpoint
        return self.endpoint


def _frame(data, session_id=1):
    return {"data": data, "sessionId": session_id, "metadata": {"deviceWidth": 800, "deviceHeight": 600}}


@pytest.fixture
def harness():
    journal = []
    viewer = Viewer(journal)
    connector = FakeConnector(journal=journal)
    resolver = Resolver(PAGE_A)
    bridge = ScreencastBridge(viewer, resolve=resolver, connect=connector, poll_interval=0.01)
    return bridge, viewer, connector, resolver, journal


@pytest.mark.asyncio
async def test_connect_attaches_and_streams(harness):
    bridge, viewer, connector, resolver, journal = harness
    await bridge.handle_message({"type": "connect", "wsBrowserUrl": BROWSER_WS})

    assert bridge.state is BridgeState.STREAMING
    assert bridge.current_endpoint == PAGE_A
    conn = connector.connections[0]
    assert conn.methods() == ["Page.enable", "Page.startScreencast"]
    params = conn.sent[1][1]
    assert params["format"] == "jpeg"
    assert params["everyNthFrame"] == 1
    assert "Live (active tab)" in viewer.statuses()

    conn.emit("Page.screencastFrame", _frame("A1", session_id=7))
    await wait_until(lambda: "Page.screencastFrameAck" in conn.methods())

    assert viewer.frames() == [{"type": "frame", "data": "A1", "w": 800, "h": 600}]
    assert conn.sent[-1] == ("Page.screencastFrameAck", {"sessionId": 7})
    # forwarded to the viewer, then acknowledged
    kinds = [(e[0], e[1]["type"] if e[0] == "viewer" else e[2]) for e in journal]
    assert kinds.index(("viewer", "frame")) < kinds.index(("cdp", "Page.screencastFrameAck"))
    await bridge.close()


@pytest.mark.asyncio
async def test_each_frame_is_acknowledged(harness):
    bridge, viewer, connector, resolver, journal = harness
    await bridge.connect(BROWSER_WS)
    conn = connector.connections[0]

    for i in range(3):
        conn.emit("Page.screencastFrame", _frame(f"A{i}", session_id=i))
    await wait_until(lambda: conn.methods().count("Page.screencastFrameAck") == 3)

    acks = [p["sessionId"] for m, p in conn.sent if m == "Page.screencastFrameAck"]
    assert acks == [0, 1, 2]
    assert [f["data"] for f in viewer.frames()] == ["A0", "A1", "A2"]
    await bridge.close()


@pytest.mark.asyncio
async def test_tab_switch_reattaches_exactly_once(harness):
    bridge, viewer, connector, resolver, journal = harness
    await bridge.connect(BROWSER_WS)
    conn_a = connector.connections[0]
    conn_a.emit("Page.screencastFrame", _frame("A1"))
    await wait_until(lambda: len(viewer.frames()) == 1)

    resolver.endpoint = PAGE_B
    await wait_until(lambda: bridge.current_endpoint == PAGE_B and bridge.state is BridgeState.STREAMING)
    conn_b = connector.for_endpoint(PAGE_B)[0]

    # late frames from the old target are never delivered
    conn_a.emit("Page.screencastFrame", _frame("A2"))
    conn_b.emit("Page.screencastFrame", _frame("B1"))
    await wait_until(lambda: any(f["data"] == "B1" for f in viewer.frames()))
    await asyncio.sleep(0.05)

    assert len(connector.connections) == 2
    assert conn_a.close_calls == 1
    assert "Page.stopScreencast" in conn_a.methods()
    assert conn_b.close_calls == 0
    data = [f["data"] for f in viewer.frames()]
    assert data == ["A1", "B1"]
    await bridge.close()


@pytest.mark.asyncio
async def test_unchanged_tab_keeps_attachment(harness):
    bridge, viewer, connector, resolver, journal = harness
    await bridge.connect(BROWSER_WS)
    await wait_until(lambda: resolver.calls >= 4)
    assert len(connector.connections) == 1
    await bridge.close()


@pytest.mark.asyncio
async def test_resolution_failure_is_reported_and_retried(harness):
    bridge, viewer, connector, resolver, journal = harness
    resolver.endpoint = NoPagesError("No page-type target available")
    await bridge.connect(BROWSER_WS)

    assert bridge.state is BridgeState.IDLE
    assert any("No page-type target" in s for s in viewer.statuses())
    await wait_until(lambda: any(s.startswith("Watcher:") for s in viewer.statuses()))

    resolver.endpoint = PAGE_A
    await wait_until(lambda: bridge.state is BridgeState.STREAMING)
    assert bridge.current_endpoint == PAGE_A
    await bridge.close()


@pytest.mark.asyncio
async def test_attach_failure_is_reported_and_retried(harness):
    bridge, viewer, connector, resolver, journal = harness
    connector.fail.add(PAGE_A)
    await bridge.connect(BROWSER_WS)
    assert any("cannot connect" in s for s in viewer.statuses())

    connector.fail.clear()
    await wait_until(lambda: bridge.state is BridgeState.STREAMING)
    await bridge.close()


@pytest.mark.asyncio
async def test_dropped_stream_reattaches(harness):
    bridge, viewer, connector, resolver, journal = harness
    await bridge.connect(BROWSER_WS)
    connector.connections[0].drop()

    await wait_until(lambda: len(connector.connections) == 2 and bridge.state is BridgeState.STREAMING)
    assert any(s.startswith("Stream interrupted") for s in viewer.statuses())
    await bridge.close()


@pytest.mark.asyncio
async def test_close_cancels_watcher_and_releases_attachment(harness):
    bridge, viewer, connector, resolver, journal = harness
    await bridge.connect(BROWSER_WS)
    conn = connector.connections[0]

    await bridge.close()
    calls = resolver.calls
    await asyncio.sleep(0.05)

    assert bridge.state is BridgeState.CLOSED
    assert bridge.current_endpoint is None
    assert conn.close_calls == 1
    assert resolver.calls == calls
    # closing twice is harmless
    await bridge.close()
    assert conn.close_calls == 1


@pytest.mark.asyncio
async def test_ignores_other_messages_and_reports_missing_url(harness):
    bridge, viewer, connector, resolver, journal = harness
    await bridge.handle_message({"type": "ping"})
    await bridge.handle_message("connect")
    assert viewer.messages == []

    await bridge.handle_message({"type": "connect"})
    assert viewer.statuses() == ["Missing wsBrowserUrl for the session."]
    assert resolver.calls == 0
    await bridge.close()


@pytest.mark.asyncio
async def test_viewers_are_independent():
    journal = []
    connector = FakeConnector(journal=journal)
    v1, v2 = Viewer([]), Viewer([])
    b1 = ScreencastBridge(v1, resolve=Resolver(PAGE_A), connect=connector, poll_interval=0.01)
    b2 = ScreencastBridge(v2, resolve=Resolver(PAGE_A), connect=connector, poll_interval=0.01)
    await b1.connect(BROWSER_WS)
    await b2.connect(BROWSER_WS)

    assert len(connector.connections) == 2
    await b1.close()
    assert connector.connections[0].close_calls == 1
    assert connector.connections[1].close_calls == 0
    assert b2.state is BridgeState.STREAMING
    await b2.close()
