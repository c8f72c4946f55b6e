"""SSE endpoint tests.

Learn: httpx's ASGITransport waits for the whole response body, so an
open-ended event stream can't be read through it. The HTTP tests cover
the paths that return immediately (401, 503, stats); the stream itself is
tested by driving the sse_stream() generator directly.
"""

import asyncio
import json

import pytest

from hassstream.realtime.broadcaster import BroadcastLimits
from hassstream.realtime.sse import sse_stream

from conftest import SECRET, RecordingSender


def _decode(line: str) -> dict:
    assert line.startswith("data: ") and line.endswith("\n\n")
    return json.loads(line[len("data: "):])


# ═══════════════════════════════════════════════════════════
# /subscribe_events
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_subscribe_requires_token(client, broadcaster):
    r = await client.get("/subscribe_events")
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Unauthorized - Invalid token"}
    assert broadcaster.connected_clients == 0


@pytest.mark.asyncio
async def test_subscribe_rejects_wrong_token(client, broadcaster):
    r = await client.get("/subscribe_events", params={"token": "wrong"})
    assert r.status_code == 401
    assert broadcaster.connected_clients == 0


@pytest.fixture()
def limits():
    return BroadcastLimits(max_clients=1)


@pytest.mark.asyncio
async def test_subscribe_when_full_returns_503(client, broadcaster):
    await broadcaster.add_client("occupant", RecordingSender(), SECRET)

    r = await client.get("/subscribe_events", params={"token": SECRET})
    assert r.status_code == 503
    assert r.json()["message"] == "Maximum client limit reached"


# ═══════════════════════════════════════════════════════════
# Stream generator
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_stream_yields_queued_frames(broadcaster):
    queue: asyncio.Queue[str] = asyncio.Queue()

    async def send(text: str) -> None:
        queue.put_nowait(text)

    await broadcaster.add_client("sse-1", send, SECRET)
    broadcaster.subscribe_to_domain("sse-1", "light")
    await broadcaster.broadcast_state_change({"entity_id": "light.hall", "state": "on"})

    stream = sse_stream(broadcaster, "sse-1", queue, poll_interval=0.01)
    first = _decode(await stream.__anext__())
    second = _decode(await stream.__anext__())

    assert first["type"] == "connection"
    assert second["type"] == "state_changed"
    assert second["data"]["entity_id"] == "light.hall"
    await stream.aclose()

    # Closing the stream removes the client
    assert "sse-1" not in broadcaster.registry


@pytest.mark.asyncio
async def test_stream_ends_when_client_evicted(broadcaster, clock):
    queue: asyncio.Queue[str] = asyncio.Queue()

    async def send(text: str) -> None:
        queue.put_nowait(text)

    await broadcaster.add_client("sse-2", send, SECRET)
    stream = sse_stream(broadcaster, "sse-2", queue, poll_interval=0.01)
    await stream.__anext__()  # handshake

    clock.advance(301)
    await broadcaster.scheduler.sweep()

    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()


@pytest.mark.asyncio
async def test_full_queue_is_transport_failure(broadcaster):
    queue: asyncio.Queue[str] = asyncio.Queue(maxsize=1)

    async def send(text: str) -> None:
        queue.put_nowait(text)

    await broadcaster.add_client("slow-reader", send, SECRET)  # fills the queue
    broadcaster.subscribe_to_domain("slow-reader", "light")

    await broadcaster.broadcast_state_change({"entity_id": "light.hall", "state": "on"})
    assert "slow-reader" not in broadcaster.registry


# ═══════════════════════════════════════════════════════════
# /get_sse_stats
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_stats_requires_token(client):
    r = await client.get("/get_sse_stats", params={"token": "nope"})
    assert r.status_code == 401
    assert r.json()["success"] is False


@pytest.mark.asyncio
async def test_stats_returns_snapshot(client, broadcaster):
    await broadcaster.add_client("a", RecordingSender(), SECRET)
    broadcaster.subscribe_to_event("a", "call_service")
    await broadcaster.broadcast_state_change({"entity_id": "switch.fan", "state": "off"})

    r = await client.get("/get_sse_stats", params={"token": SECRET})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    stats = body["statistics"]
    assert stats["total_clients"] == 1
    assert stats["authenticated_clients"] == 1
    assert stats["total_subscriptions"] == 1
    assert stats["total_entities_tracked"] == 1
    assert stats["clients_by_connection_time"]["less_than_1m"] == 1
