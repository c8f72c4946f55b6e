"""Event feed — routes Home Assistant events into the broadcaster.

Learn: The feed runs as a background task in the FastAPI lifespan:

  connect → authenticate → subscribe_events → for each event: route()

Routing:
  state_changed (with new_state) → broadcast_state_change(new_state)
  call_service                   → broadcast_service_call + broadcast_event
  automation_triggered           → broadcast_automation_triggered + broadcast_event
  script_started                 → broadcast_script_executed + broadcast_event
  anything else                  → broadcast_event

On a dropped connection it backs off exponentially (reconnect_delay, then
double per consecutive failure) and tries again, up to
max_reconnect_attempts consecutive failures. A rejected token stops the
feed for good (retrying won't fix it).
"""

import asyncio
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError

from hassstream.hass.client import HassAuthError, HassConnectionError, HassWebSocketClient
from hassstream.realtime.broadcaster import Broadcaster

logger = structlog.get_logger()


class HassEventFeed:
    """Keeps a Home Assistant connection alive and forwards its events."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        client_factory: Callable[[], HassWebSocketClient],
        reconnect_delay: float = 1.0,
        max_reconnect_attempts: int = 5,
    ):
        self.broadcaster = broadcaster
        self.client_factory = client_factory
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.status = "idle"
        self.events_received = 0
        self._client: Optional[HassWebSocketClient] = None
        self._running = False

    async def run(self) -> None:
        """Connect and forward events until stopped or out of retries."""
        self._running = True
        failures = 0

        while self._running:
            self._client = self.client_factory()
            self.status = "connecting"
            try:
                await self._client.connect()
                await self._client.subscribe_events()
                self.status = "connected"
                failures = 0
                logger.info("feed.connected", url=self._client.url)

                async for message in self._client.messages():
                    await self.dispatch(message)
            except HassAuthError as e:
                self.status = "auth_failed"
                logger.error("feed.auth_failed", error=str(e))
                return
            except HassConnectionError as e:
                if not self._running:
                    return
                failures += 1
                self.status = "disconnected"
                logger.warning(
                    "feed.connection_lost",
                    error=str(e),
                    attempt=failures,
                    max_attempts=self.max_reconnect_attempts,
                )
            finally:
                await self._client.close()

            if failures > self.max_reconnect_attempts:
                self.status = "gave_up"
                logger.error("feed.gave_up", attempts=failures)
                return
            if self._running:
                await asyncio.sleep(self.backoff_delay(failures))

    def backoff_delay(self, failures: int) -> float:
        """Seconds to wait after `failures` consecutive failed attempts."""
        return self.reconnect_delay * 2 ** max(failures - 1, 0)

    async def stop(self) -> None:
        self._running = False
        self.status = "stopped"
        if self._client is not None:
            await self._client.close()
        logger.info("feed.stopping")

    async def dispatch(self, message: dict[str, Any]) -> None:
        """Handle one raw message from Home Assistant."""
        if message.get("type") == "result" and not message.get("success", True):
            logger.warning("feed.command_failed", id=message.get("id"), error=message.get("error"))
            return
        if message.get("type") != "event" or not isinstance(message.get("event"), dict):
            return

        self.events_received += 1
        try:
            await self.route(message["event"])
        except ValidationError as e:
            logger.warning(
                "feed.invalid_event",
                event_type=message["event"].get("event_type"),
                error=str(e),
            )
        except Exception:
            logger.exception("feed.dispatch_error", event_type=message["event"].get("event_type"))

    async def route(self, event: dict[str, Any]) -> None:
        event_type = event.get("event_type")
        data = event.get("data") or {}
        if not isinstance(data, dict):
            logger.warning("feed.malformed_event", event_type=event_type)
            return

        if event_type == "state_changed":
            new_state = data.get("new_state")
            if new_state:
                await self.broadcaster.broadcast_state_change(new_state)
            return

        if event_type == "call_service":
            await self.broadcaster.broadcast_service_call(
                data.get("domain", ""),
                data.get("service", ""),
                data.get("service_data"),
            )
        elif event_type == "automation_triggered":
            await self.broadcaster.broadcast_automation_triggered(
                data.get("entity_id", ""), data
            )
        elif event_type == "script_started":
            await self.broadcaster.broadcast_script_executed(
                data.get("entity_id", ""), data
            )

        await self.broadcaster.broadcast_event(event)
