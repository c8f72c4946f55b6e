"""Client registry — the authoritative map of connected clients.

Learn: The registry is the only component that creates or deletes a
Client. It also owns two things that must die with a client:

1. the client's heartbeat task (kept in an id → task arena, cancelled
   synchronously in remove())
2. the client's rate-limit counters (checked in deliver())

Concurrency model (single asyncio loop):
- Mutations that don't send anything (create, remove, subscribe) have no
  await inside them, so no other coroutine can observe them half-done.
- Everything that sends frames runs under `self.lock`. That serializes
  broadcasts, heartbeats, replays and the maintenance sweep, which is what
  keeps one client's frames in broadcast order.
- deliver() rechecks registration right before sending, so a client
  removed halfway through a broadcast pass gets nothing more.
"""

import asyncio
import time
from typing import Callable, Iterator, Optional

import structlog

from hassstream.auth.token import verify_token
from hassstream.realtime import frames
from hassstream.realtime.clients import Client, SendCapability
from hassstream.realtime.rate_limit import RateLimiter

logger = structlog.get_logger()


class ClientRegistry:
    """Connected clients, their heartbeat handles, and guarded delivery."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        secret_token: str = "",
        max_clients: int = 100,
        send_timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rate_limiter = rate_limiter
        self.secret_token = secret_token
        self.max_clients = max_clients
        self.send_timeout = send_timeout
        self.clock = clock
        self.lock = asyncio.Lock()
        self._clients: dict[str, Client] = {}
        self._heartbeats: dict[str, asyncio.Task] = {}

    # ─── Membership ───────────────────────────────────────

    def create(
        self,
        client_id: str,
        send: SendCapability,
        token: Optional[str] = None,
    ) -> Optional[Client]:
        """Register a new client. Returns None when full or the id is taken.

        Capacity check and insertion happen without a suspension point in
        between, so concurrent connects can't overshoot max_clients.
        """
        if len(self._clients) >= self.max_clients:
            logger.warning(
                "registry.capacity_exceeded",
                client_id=client_id,
                max_clients=self.max_clients,
            )
            return None
        if client_id in self._clients:
            logger.warning("registry.duplicate_client_id", client_id=client_id)
            return None

        now = self.clock()
        client = Client(
            id=client_id,
            send=send,
            authenticated=verify_token(token, self.secret_token),
            connected_at=now,
            last_activity=now,
        )
        client.rate_limit.window_start = now
        self._clients[client_id] = client
        logger.info(
            "registry.client_added",
            client_id=client_id,
            authenticated=client.authenticated,
            total_clients=len(self._clients),
        )
        return client

    def remove(self, client_id: str) -> bool:
        """Delete a client and cancel its heartbeat. Absent ids are a no-op."""
        heartbeat = self._heartbeats.pop(client_id, None)
        if heartbeat is not None:
            heartbeat.cancel()

        client = self._clients.pop(client_id, None)
        if client is None:
            return False
        logger.info(
            "registry.client_removed",
            client_id=client_id,
            total_clients=len(self._clients),
        )
        return True

    def attach_heartbeat(self, client_id: str, task: asyncio.Task) -> None:
        """Remember a client's heartbeat task so remove() can cancel it."""
        if client_id not in self._clients:
            # Client already gone (e.g. handshake failed), so cancel the task
            task.cancel()
            return
        previous = self._heartbeats.pop(client_id, None)
        if previous is not None:
            previous.cancel()
        self._heartbeats[client_id] = task

    def get(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)

    def is_registered(self, client: Client) -> bool:
        return self._clients.get(client.id) is client

    def snapshot(self) -> list[Client]:
        """Stable list of current clients, safe to iterate across awaits."""
        return list(self._clients.values())

    def heartbeat_count(self) -> int:
        return len(self._heartbeats)

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def __iter__(self) -> Iterator[Client]:
        return iter(self.snapshot())

    # ─── Subscriptions ────────────────────────────────────

    def _authenticated(self, client_id: str) -> Optional[Client]:
        client = self._clients.get(client_id)
        if client is None or not client.authenticated:
            return None
        return client

    def subscribe_entity(self, client_id: str, entity_id: str) -> Optional[Client]:
        """Add an entity interest. Returns the client, or None if ignored."""
        client = self._authenticated(client_id)
        if client is not None:
            client.subscriptions.entities.add(entity_id)
            logger.debug("registry.subscribed", client_id=client_id, entity_id=entity_id)
        return client

    def subscribe_domain(self, client_id: str, domain: str) -> Optional[Client]:
        client = self._authenticated(client_id)
        if client is not None:
            client.subscriptions.domains.add(domain)
            logger.debug("registry.subscribed", client_id=client_id, domain=domain)
        return client

    def subscribe_event(self, client_id: str, event_type: str) -> Optional[Client]:
        client = self._authenticated(client_id)
        if client is not None:
            client.subscriptions.events.add(event_type)
            logger.debug("registry.subscribed", client_id=client_id, event_type=event_type)
        return client

    # ─── Delivery (caller holds self.lock) ────────────────

    async def deliver(self, client: Client, frame: dict) -> bool:
        """Rate-limit, then send one frame. Returns False if nothing was delivered.

        A client over its budget gets a single rate_limit_exceeded frame
        instead of the payload. That substitute goes straight to the
        transport and is never counted, so it can't recurse.
        """
        if not self.is_registered(client):
            return False

        if not self.rate_limiter.allow(client.rate_limit, self.clock()):
            logger.warning(
                "registry.rate_limited",
                client_id=client.id,
                dropped_type=frame.get("type"),
            )
            await self._transmit(client, frames.rate_limit_frame())
            return False

        return await self._transmit(client, frame)

    async def _transmit(self, client: Client, frame: dict) -> bool:
        """Push an encoded frame through the client's send capability.

        Any failure, including a send that exceeds send_timeout, is fatal
        for this client only: it is removed and the caller moves on.
        """
        try:
            await asyncio.wait_for(
                client.send(frames.encode(frame)),
                timeout=self.send_timeout,
            )
        except Exception as e:
            logger.warning(
                "registry.send_failed",
                client_id=client.id,
                frame_type=frame.get("type"),
                error=str(e) or type(e).__name__,
            )
            self.remove(client.id)
            return False

        client.last_activity = self.clock()
        return True
