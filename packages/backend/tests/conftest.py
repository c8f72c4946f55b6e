"""Test fixtures — isolated broadcasters with a controllable clock.

Learn: Every test gets its own Broadcaster, so nothing leaks between tests:

1. `clock` is a FakeClock the broadcaster reads instead of time.monotonic,
   so idle timeouts and rate-limit windows are driven by clock.advance()
2. `RecordingSender` stands in for a transport: it records every frame it
   is asked to send, or raises like a broken pipe when `fail` is set
3. `client` is an httpx client bound to a fresh app whose app.state holds
   the test's broadcaster (ASGITransport doesn't run the lifespan)
"""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from hassstream.main import create_app
from hassstream.realtime.broadcaster import BroadcastLimits, Broadcaster

SECRET = "test-secret-token"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSender:
    """Send capability that records decoded frames."""

    def __init__(self):
        self.frames: list[dict] = []
        self.fail = False
        self.calls = 0

    async def __call__(self, text: str) -> None:
        self.calls += 1
        if self.fail:
            raise ConnectionResetError("broken pipe")
        self.frames.append(json.loads(text))

    def types(self) -> list[str]:
        return [f["type"] for f in self.frames]

    def of_type(self, frame_type: str) -> list[dict]:
        return [f for f in self.frames if f["type"] == frame_type]

    def clear(self) -> None:
        self.frames.clear()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def limits():
    return BroadcastLimits()


@pytest_asyncio.fixture()
async def broadcaster(clock, limits):
    b = Broadcaster(secret_token=SECRET, limits=limits, clock=clock)
    yield b
    await b.stop()


@pytest.fixture()
def connect(broadcaster):
    """Register a client with a fresh RecordingSender; handshake frame cleared.

    Usage: sender, client = await connect("c1")
    """

    async def _connect(client_id: str, token: str | None = SECRET):
        sender = RecordingSender()
        client = await broadcaster.add_client(client_id, sender, token)
        sender.clear()
        return sender, client

    return _connect


@pytest.fixture()
def app(broadcaster):
    """Fresh app wired to the test's broadcaster."""
    app = create_app()
    app.state.broadcaster = broadcaster
    return app


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
