"""Broadcaster — fan-out of Home Assistant events to subscribed clients.

Learn: One Broadcaster is constructed by the app lifespan and handed to
everything that needs it (upstream feed, SSE/WS routes). It is not a
hidden module global, so tests build as many isolated instances as they
like.

Flow for every inbound event:

  upstream feed → broadcast_*() → match clients by subscription
      → registry.deliver() (rate limit → send) → on failure: remove

Matching rules:
- state_changed: entity id ∈ entities, OR domain ∈ domains, OR
  "state_changed" ∈ events. One copy per client however many match.
- everything else: event type ∈ events.
- unauthenticated clients never match anything.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import structlog

from hassstream.auth.token import verify_token
from hassstream.realtime import frames
from hassstream.realtime.clients import Client, SendCapability, Subscriptions
from hassstream.realtime.maintenance import MaintenanceScheduler
from hassstream.realtime.rate_limit import RateLimiter
from hassstream.realtime.registry import ClientRegistry
from hassstream.realtime.state_cache import EntityStateCache
from hassstream.realtime.stats import compute_statistics
from hassstream.schemas.hass import BroadcastStatistics, EntityState, HassEvent

logger = structlog.get_logger()


@dataclass(frozen=True)
class BroadcastLimits:
    """Capacity, rate and timing limits for one broadcaster."""

    max_clients: int = 100
    rate_limit_window: float = 60.0
    rate_limit_max_requests: int = 1000
    client_timeout: float = 300.0
    ping_interval: float = 30.0
    maintenance_interval: float = 60.0
    send_timeout: float = 5.0

    @classmethod
    def from_settings(cls, settings) -> "BroadcastLimits":
        return cls(
            max_clients=settings.max_clients,
            rate_limit_window=settings.rate_limit_window_seconds,
            rate_limit_max_requests=settings.rate_limit_max_requests,
            client_timeout=settings.client_timeout_seconds,
            ping_interval=settings.ping_interval_seconds,
            maintenance_interval=settings.maintenance_interval_seconds,
            send_timeout=settings.send_timeout_seconds,
        )


class Broadcaster:
    """Client lifecycle, subscriptions and event fan-out behind one handle."""

    def __init__(
        self,
        secret_token: str = "",
        limits: Optional[BroadcastLimits] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limits = limits or BroadcastLimits()
        self.secret_token = secret_token
        self.clock = clock
        self.rate_limiter = RateLimiter(
            window_seconds=self.limits.rate_limit_window,
            max_requests=self.limits.rate_limit_max_requests,
        )
        self.registry = ClientRegistry(
            self.rate_limiter,
            secret_token=secret_token,
            max_clients=self.limits.max_clients,
            send_timeout=self.limits.send_timeout,
            clock=clock,
        )
        self.states = EntityStateCache()
        self.scheduler = MaintenanceScheduler(
            self.registry,
            self.rate_limiter,
            interval=self.limits.maintenance_interval,
            client_timeout=self.limits.client_timeout,
            ping_interval=self.limits.ping_interval,
        )
        self._maintenance_task: Optional[asyncio.Task] = None

    # ─── Lifecycle ────────────────────────────────────────

    def start(self) -> None:
        """Start the maintenance sweep (requires a running event loop)."""
        if self._maintenance_task is None:
            self._maintenance_task = asyncio.create_task(self.scheduler.run_loop())

    async def stop(self) -> None:
        """Stop the sweep and drop every client (cancelling their heartbeats)."""
        self.scheduler.stop()
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        for client in self.registry.snapshot():
            self.registry.remove(client.id)
        logger.info("broadcaster.stopped")

    # ─── Clients ──────────────────────────────────────────

    async def add_client(
        self,
        client_id: str,
        send: SendCapability,
        token: Optional[str] = None,
    ) -> Optional[Client]:
        """Register a client, start its heartbeat and send the handshake.

        Returns None when the registry is full (nothing is created), or
        when the handshake itself could not be delivered (the client has
        already been removed again).
        """
        client = self.registry.create(client_id, send, token)
        if client is None:
            return None

        self.scheduler.start_heartbeat(client_id)

        async with self.registry.lock:
            await self.registry.deliver(
                client,
                frames.connection_frame(client_id, client.authenticated),
            )

        if not self.registry.is_registered(client):
            return None
        return client

    def remove_client(self, client_id: str) -> None:
        self.registry.remove(client_id)

    async def subscribe_to_entity(self, client_id: str, entity_id: str) -> None:
        """Subscribe to one entity and replay its last known state, if any."""
        client = self.registry.subscribe_entity(client_id, entity_id)
        if client is None:
            return

        cached = self.states.get(entity_id)
        if cached is None:
            return
        async with self.registry.lock:
            await self.registry.deliver(client, frames.state_changed_frame(cached))

    def subscribe_to_domain(self, client_id: str, domain: str) -> None:
        self.registry.subscribe_domain(client_id, domain)

    def subscribe_to_event(self, client_id: str, event_type: str) -> None:
        self.registry.subscribe_event(client_id, event_type)

    # ─── Inbound events ───────────────────────────────────

    async def broadcast_state_change(
        self, entity: Union[EntityState, dict[str, Any]]
    ) -> int:
        """Cache the new state and deliver it to every matching client."""
        if not isinstance(entity, EntityState):
            entity = EntityState.model_validate(entity)

        self.states.update(entity)
        entity_id, domain = entity.entity_id, entity.domain

        return await self._fan_out(
            frames.state_changed_frame(entity),
            lambda subs: subs.matches_state_change(entity_id, domain),
        )

    async def broadcast_event(self, event: Union[HassEvent, dict[str, Any]]) -> int:
        if not isinstance(event, HassEvent):
            event = HassEvent.model_validate(event)

        return await self._fan_out_to_event_subscribers(
            event.event_type, frames.event_frame(event)
        )

    async def broadcast_service_call(
        self, domain: str, service: str, data: Optional[dict[str, Any]] = None
    ) -> int:
        frame = frames.notification_frame(
            frames.SERVICE_CALLED,
            {"domain": domain, "service": service, "service_data": data},
        )
        return await self._fan_out_to_event_subscribers(frames.SERVICE_CALLED, frame)

    async def broadcast_automation_triggered(
        self, automation_id: str, trigger: Any = None
    ) -> int:
        frame = frames.notification_frame(
            frames.AUTOMATION_TRIGGERED,
            {"automation_id": automation_id, "trigger": trigger},
        )
        return await self._fan_out_to_event_subscribers(
            frames.AUTOMATION_TRIGGERED, frame
        )

    async def broadcast_script_executed(self, script_id: str, data: Any = None) -> int:
        frame = frames.notification_frame(
            frames.SCRIPT_EXECUTED,
            {"script_id": script_id, "execution_data": data},
        )
        return await self._fan_out_to_event_subscribers(frames.SCRIPT_EXECUTED, frame)

    async def _fan_out_to_event_subscribers(self, event_type: str, frame: dict) -> int:
        return await self._fan_out(frame, lambda subs: event_type in subs.events)

    async def _fan_out(
        self,
        frame: dict,
        matches: Callable[[Subscriptions], bool],
    ) -> int:
        """Deliver one frame serially to every authenticated matching client.

        Returns how many clients actually received the payload. A client
        whose send fails is removed by the registry and skipped.
        """
        delivered = 0
        async with self.registry.lock:
            for client in self.registry.snapshot():
                if not client.authenticated or not matches(client.subscriptions):
                    continue
                if await self.registry.deliver(client, frame):
                    delivered += 1

        logger.debug(
            "broadcaster.fan_out",
            frame_type=frame.get("type"),
            delivered=delivered,
        )
        return delivered

    # ─── Introspection ────────────────────────────────────

    def is_valid_token(self, token: Optional[str]) -> bool:
        return verify_token(token, self.secret_token)

    @property
    def connected_clients(self) -> int:
        return len(self.registry)

    def get_client_subscriptions(self, client_id: str) -> Optional[Subscriptions]:
        client = self.registry.get(client_id)
        return client.subscriptions if client else None

    def get_entity_state(self, entity_id: str) -> Optional[EntityState]:
        return self.states.get(entity_id)

    def get_statistics(self) -> BroadcastStatistics:
        return compute_statistics(
            self.registry.snapshot(),
            entities_tracked=len(self.states),
            now=self.clock(),
        )
