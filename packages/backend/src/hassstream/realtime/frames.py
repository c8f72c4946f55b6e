"""Outbound frame builders.

Learn: Every frame is a JSON object with a `type` and a `timestamp`. The
timestamp is the delivery time (when the frame is built), not the time the
event happened; Home Assistant's own times travel in `time_fired`,
`last_changed`, `last_updated`.

Frame types are centralized here as constants so transports and tests
don't scatter string literals.
"""

import json
from datetime import datetime, timezone
from typing import Any

from hassstream.schemas.hass import EntityState, HassEvent

# ─── Frame types ─────────────────────────────────────────

CONNECTION = "connection"
PING = "ping"
PONG = "pong"
ERROR = "error"
STATE_CHANGED = "state_changed"
SERVICE_CALLED = "service_called"
AUTOMATION_TRIGGERED = "automation_triggered"
SCRIPT_EXECUTED = "script_executed"

RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


def utc_timestamp() -> str:
    """ISO-8601 UTC instant with millisecond precision, e.g. 2024-05-01T12:00:00.000Z."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def encode(frame: dict[str, Any]) -> str:
    return json.dumps(frame, default=str)


# ─── Builders ────────────────────────────────────────────


def connection_frame(client_id: str, authenticated: bool) -> dict[str, Any]:
    return {
        "type": CONNECTION,
        "status": "connected",
        "id": client_id,
        "authenticated": authenticated,
        "timestamp": utc_timestamp(),
    }


def ping_frame() -> dict[str, Any]:
    return {"type": PING, "timestamp": utc_timestamp()}


def pong_frame() -> dict[str, Any]:
    return {"type": PONG, "timestamp": utc_timestamp()}


def rate_limit_frame() -> dict[str, Any]:
    return {
        "type": ERROR,
        "error": RATE_LIMIT_EXCEEDED,
        "message": "Too many requests, please try again later",
        "timestamp": utc_timestamp(),
    }


def state_changed_frame(entity: EntityState) -> dict[str, Any]:
    return {
        "type": STATE_CHANGED,
        "data": {
            "entity_id": entity.entity_id,
            "state": entity.state,
            "attributes": entity.attributes,
            "last_changed": entity.last_changed,
            "last_updated": entity.last_updated,
        },
        "timestamp": utc_timestamp(),
    }


def event_frame(event: HassEvent) -> dict[str, Any]:
    return {
        "type": event.event_type,
        "data": event.data,
        "origin": event.origin,
        "time_fired": event.time_fired,
        "context": event.context,
        "timestamp": utc_timestamp(),
    }


def notification_frame(frame_type: str, data: dict[str, Any]) -> dict[str, Any]:
    """Frame for the service/automation/script convenience notifications."""
    return {"type": frame_type, "data": data, "timestamp": utc_timestamp()}
