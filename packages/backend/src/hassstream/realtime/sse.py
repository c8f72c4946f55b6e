"""Server-Sent Events endpoints.

Learn: Each GET /subscribe_events opens one long-lived stream:
1. Token checked up front (401 JSON on failure)
2. A client is registered with a send capability that pushes frames into
   a bounded asyncio.Queue (put_nowait — a full queue means the reader
   can't keep up, which the registry treats as a transport failure)
3. Subscriptions from the query string are applied
4. The response drains the queue as `data: <json>\\n\\n` lines

The stream ends when the HTTP client disconnects or when the broadcaster
drops the client (send failure, idle eviction). Either way the client is
removed in the generator's finally block.
"""

import asyncio
import uuid
from typing import AsyncIterator, Optional

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from hassstream.config import settings
from hassstream.realtime.broadcaster import Broadcaster
from hassstream.realtime.dependencies import get_broadcaster
from hassstream.schemas.hass import StatisticsResponse

logger = structlog.get_logger()
router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _unauthorized() -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"success": False, "message": "Unauthorized - Invalid token"},
    )


def _split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


async def sse_stream(
    broadcaster: Broadcaster,
    client_id: str,
    queue: "asyncio.Queue[str]",
    poll_interval: float = 5.0,
) -> AsyncIterator[str]:
    """Yield SSE lines for one client until it leaves the registry."""
    try:
        while True:
            try:
                text = await asyncio.wait_for(queue.get(), timeout=poll_interval)
            except asyncio.TimeoutError:
                if client_id not in broadcaster.registry:
                    break
                continue
            yield f"data: {text}\n\n"
    finally:
        broadcaster.remove_client(client_id)
        logger.info("sse.stream_closed", client_id=client_id)


@router.get("/subscribe_events")
async def subscribe_events(
    token: Optional[str] = None,
    events: Optional[str] = None,
    entity_id: Optional[str] = None,
    domain: Optional[str] = None,
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Open an event stream. `events` is a comma-separated list of event types."""
    if not broadcaster.is_valid_token(token):
        return _unauthorized()

    client_id = str(uuid.uuid4())
    queue: asyncio.Queue[str] = asyncio.Queue(maxsize=settings.sse_queue_size)

    async def send(text: str) -> None:
        queue.put_nowait(text)

    client = await broadcaster.add_client(client_id, send, token)
    if client is None:
        return JSONResponse(
            status_code=503,
            content={"success": False, "message": "Maximum client limit reached"},
        )

    for event_type in _split_csv(events):
        broadcaster.subscribe_to_event(client_id, event_type)
    if entity_id:
        await broadcaster.subscribe_to_entity(client_id, entity_id)
    if domain:
        broadcaster.subscribe_to_domain(client_id, domain)

    logger.info(
        "sse.stream_opened",
        client_id=client_id,
        events=_split_csv(events),
        entity_id=entity_id,
        domain=domain,
    )
    return StreamingResponse(
        sse_stream(broadcaster, client_id, queue),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/get_sse_stats")
async def get_sse_stats(
    token: Optional[str] = None,
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Connection statistics for the broadcaster."""
    if not broadcaster.is_valid_token(token):
        return _unauthorized()
    return StatisticsResponse(statistics=broadcaster.get_statistics())
