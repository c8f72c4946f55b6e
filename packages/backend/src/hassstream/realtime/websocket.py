"""WebSocket endpoint — bidirectional event delivery.

Learn: Each client connects to /ws?token=... The handler:
1. Accepts and registers the socket with the broadcaster; the connection
   handshake frame is the first thing the client receives
2. Closes with 1013 (try again later) when the registry is full, and with
   4001 after the handshake when the token was wrong
3. Reads JSON commands from the client to manage subscriptions
4. Watches the registry and closes the socket once the broadcaster drops
   the client (idle timeout, failed send, shutdown)
5. Removes the client when the socket closes

Outbound frames are pushed by the broadcaster through `send`, on whatever
task is doing the broadcast. The loop here only reads.

Commands:
    {"type": "subscribe_entity", "entity_id": "light.kitchen"}
    {"type": "subscribe_domain", "domain": "light"}
    {"type": "subscribe_events", "events": ["call_service", "state_changed"]}
    {"type": "ping"}  →  {"type": "pong", ...}
"""

import asyncio
import json
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from hassstream.realtime import frames
from hassstream.realtime.broadcaster import Broadcaster
from hassstream.realtime.dependencies import get_broadcaster

logger = structlog.get_logger()
router = APIRouter()

REGISTRATION_POLL_SECONDS = 1.0


async def handle_command(broadcaster: Broadcaster, client_id: str, msg: dict) -> Optional[dict]:
    """Apply one client command. Returns a direct reply frame, if any."""
    kind = msg.get("type")

    if kind == "ping":
        return frames.pong_frame()
    if kind == "subscribe_entity" and msg.get("entity_id"):
        await broadcaster.subscribe_to_entity(client_id, str(msg["entity_id"]))
    elif kind == "subscribe_domain" and msg.get("domain"):
        broadcaster.subscribe_to_domain(client_id, str(msg["domain"]))
    elif kind == "subscribe_events" and isinstance(msg.get("events"), list):
        for event_type in msg["events"]:
            broadcaster.subscribe_to_event(client_id, str(event_type))
    else:
        logger.debug("ws.unknown_command", client_id=client_id, command=kind)
    return None


@router.websocket("/ws")
async def events_websocket(websocket: WebSocket):
    """WebSocket endpoint for real-time Home Assistant events."""
    broadcaster = get_broadcaster(websocket)
    token = websocket.query_params.get("token")

    await websocket.accept()

    client_id = str(uuid.uuid4())

    async def send(text: str) -> None:
        await websocket.send_text(text)

    client = await broadcaster.add_client(client_id, send, token)
    if client is None:
        await websocket.close(code=1013, reason="Maximum client limit reached")
        return

    if not client.authenticated:
        broadcaster.remove_client(client_id)
        await websocket.close(code=4001, reason="Invalid or missing token")
        return

    log = logger.bind(client_id=client_id)
    log.info("ws.connected")

    async def client_listener():
        """Apply commands from the client until it disconnects."""
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    log.debug("ws.invalid_json")
                    continue
                if not isinstance(msg, dict):
                    continue

                reply = await handle_command(broadcaster, client_id, msg)
                if reply is not None:
                    await websocket.send_text(frames.encode(reply))
        except WebSocketDisconnect:
            pass

    async def registration_watch():
        """Return once the broadcaster has removed the client."""
        while client_id in broadcaster.registry:
            await asyncio.sleep(REGISTRATION_POLL_SECONDS)
        log.info("ws.evicted")

    client_task = asyncio.create_task(client_listener())
    watch_task = asyncio.create_task(registration_watch())

    try:
        done, pending = await asyncio.wait(
            [client_task, watch_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()
    finally:
        client_task.cancel()
        watch_task.cancel()
        broadcaster.remove_client(client_id)
        log.info("ws.disconnected")
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
