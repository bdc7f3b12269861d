"""
Shared fixtures and fakes for the mission relay tests.

Async code is driven with asyncio.run() from plain test functions.
"""

import asyncio
import json
import os
from typing import Any, Callable, Dict, List, Optional

import pytest
from starlette.websockets import WebSocketState

from mission_relay.config import RelaySettings
from mission_relay.models.schemas import StatusEnvelope


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests isolated from MISSION_RELAY_* variables on the machine."""
    for key in list(os.environ.keys()):
        if key.startswith("MISSION_RELAY_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def relay_settings(tmp_path) -> RelaySettings:
    """Relay settings rooted in a temporary directory."""
    settings = RelaySettings.for_base_dir(str(tmp_path))
    os.makedirs(settings.status_dir, exist_ok=True)
    return settings


def envelope(mission: str, **data) -> StatusEnvelope:
    return StatusEnvelope(mission=mission, data=data)


def write_status(status_dir: str, mission: str, data: Dict[str, Any]) -> str:
    path = os.path.join(status_dir, f"{mission}.json")
    with open(path, "w") as f:
        json.dump(data, f)
    return path


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll ``predicate`` on the running loop until true or timed out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


# ============================================================================
# SERVER-SIDE CHANNEL FAKE
# ============================================================================

class FakeChannel:
    """Stands in for a server-side FastAPI WebSocket."""

    def __init__(self, open: bool = True, fail: bool = False):
        state = WebSocketState.CONNECTED if open else WebSocketState.CONNECTING
        self.client_state = state
        self.application_state = state
        self.fail = fail
        self.sent: List[str] = []
        self.accepted = False
        self.closed = False

    async def accept(self):
        self.accepted = True
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, message: str):
        if self.fail:
            raise RuntimeError("socket is half closed")
        self.sent.append(message)

    async def close(self):
        self.closed = True
        self.application_state = WebSocketState.DISCONNECTED

    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(m) for m in self.sent]


# ============================================================================
# CLIENT-SIDE CONNECT FAKE
# ============================================================================

class FakeConnection:
    """One client-side connection; frames are pushed in by the test."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def push(self, frame: Any):
        if not isinstance(frame, (str, bytes)):
            frame = json.dumps(frame)
        self.queue.put_nowait(frame)

    def drop(self):
        """Simulate the relay going away."""
        self.queue.put_nowait(None)

    async def close(self):
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.queue.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class _FakeConnectContext:
    def __init__(self, server: "FakePushServer"):
        self.server = server
        self.connection: Optional[FakeConnection] = None

    async def __aenter__(self) -> FakeConnection:
        if self.server.refuse:
            raise OSError("Connection refused")
        self.connection = FakeConnection()
        self.server.connections.append(self.connection)
        return self.connection

    async def __aexit__(self, exc_type, exc, tb):
        await self.connection.close()


class FakePushServer:
    """Replacement for ``websockets.connect``."""

    def __init__(self, refuse: bool = False):
        self.refuse = refuse
        self.calls = 0
        self.urls: List[str] = []
        self.connections: List[FakeConnection] = []

    def __call__(self, url: str) -> _FakeConnectContext:
        self.calls += 1
        self.urls.append(url)
        return _FakeConnectContext(self)

    @property
    def current(self) -> Optional[FakeConnection]:
        if self.connections and not self.connections[-1].closed:
            return self.connections[-1]
        return None

    def broadcast(self, mission: str, **data):
        self.current.push({"type": "status", "mission": mission, "data": data})
