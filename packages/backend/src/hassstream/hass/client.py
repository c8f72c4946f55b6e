"""Home Assistant WebSocket API client.

Learn: The protocol is a short handshake followed by numbered commands:

  server → {"type": "auth_required"}
  client → {"type": "auth", "access_token": "..."}
  server → {"type": "auth_ok"} | {"type": "auth_invalid", "message": "..."}
  client → {"id": 1, "type": "subscribe_events"}
  server → {"id": 1, "type": "result", "success": true}
  server → {"id": 1, "type": "event", "event": {...}}   (repeated)

Every command carries a fresh, increasing id. auth_invalid is fatal
(HassAuthError); anything else that breaks the connection surfaces as
HassConnectionError so the feed can reconnect.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = structlog.get_logger()


class HassAuthError(Exception):
    """Raised when Home Assistant rejects the access token."""


class HassConnectionError(Exception):
    """Raised when the WebSocket connection fails or drops."""


class HassWebSocketClient:
    """One connection to the Home Assistant WebSocket API."""

    def __init__(
        self,
        url: str,
        token: str,
        handshake_timeout: float = 10.0,
        connect=websockets.connect,
    ):
        self.url = url
        self.token = token
        self.handshake_timeout = handshake_timeout
        self._connect = connect
        self._ws = None
        self._message_id = 1
        self.authenticated = False

    async def connect(self) -> None:
        """Open the socket and complete the auth handshake."""
        try:
            self._ws = await self._connect(self.url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise HassConnectionError(f"connect to {self.url} failed: {e}") from e

        try:
            await asyncio.wait_for(self._authenticate(), timeout=self.handshake_timeout)
        except asyncio.TimeoutError as e:
            await self.close()
            raise HassConnectionError("authentication handshake timed out") from e
        except HassAuthError:
            await self.close()
            raise

    async def _authenticate(self) -> None:
        while True:
            message = await self._recv()
            kind = message.get("type")
            if kind == "auth_required":
                await self._send({"type": "auth", "access_token": self.token})
            elif kind == "auth_ok":
                self.authenticated = True
                logger.info("hass.authenticated", ha_version=message.get("ha_version"))
                return
            elif kind == "auth_invalid":
                raise HassAuthError(message.get("message") or "Authentication failed")

    async def send_command(self, command_type: str, **fields: Any) -> int:
        """Send a numbered command. Returns the id it was sent with."""
        message_id = self._message_id
        self._message_id += 1
        await self._send({"id": message_id, "type": command_type, **fields})
        return message_id

    async def subscribe_events(self, event_type: Optional[str] = None) -> int:
        """Subscribe to the event bus (all events when event_type is None)."""
        if event_type:
            return await self.send_command("subscribe_events", event_type=event_type)
        return await self.send_command("subscribe_events")

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded messages until the connection closes."""
        while True:
            yield await self._recv()

    async def close(self) -> None:
        self.authenticated = False
        if self._ws is not None:
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except (OSError, WebSocketException):
                pass

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None:
            raise HassConnectionError("not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except (OSError, WebSocketException) as e:
            raise HassConnectionError(f"send failed: {e}") from e

    async def _recv(self) -> dict[str, Any]:
        if self._ws is None:
            raise HassConnectionError("not connected")
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            raise HassConnectionError(f"connection closed: {e}") from e
        except (OSError, WebSocketException) as e:
            raise HassConnectionError(f"receive failed: {e}") from e

        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            raise HassConnectionError(f"invalid JSON from Home Assistant: {e}") from e
        if not isinstance(message, dict):
            raise HassConnectionError("unexpected message shape from Home Assistant")
        return message
