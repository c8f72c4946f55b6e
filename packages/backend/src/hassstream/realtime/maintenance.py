"""Maintenance sweep and per-client heartbeats.

Learn: Two independent timers keep the registry healthy:

1. The sweep (every maintenance_interval, default 60s) walks all clients:
   idle longer than client_timeout (default 300s) → removed; otherwise an
   expired rate-limit window is reset.
2. One heartbeat task per client (every ping_interval, default 30s) sends
   a `ping`. A successful ping counts as activity, so a live connection
   subscribed to rare topics is never evicted as idle.

A failure while handling one client is logged and the loop moves on to
the next; nothing here stops because of a single bad connection.

Usage:
    scheduler = MaintenanceScheduler(registry, rate_limiter)
    asyncio.create_task(scheduler.run_loop())
    scheduler.start_heartbeat(client_id)
"""

import asyncio

import structlog

from hassstream.realtime import frames
from hassstream.realtime.rate_limit import RateLimiter
from hassstream.realtime.registry import ClientRegistry

logger = structlog.get_logger()


class MaintenanceScheduler:
    """Periodic stale-client eviction plus per-client ping heartbeats."""

    def __init__(
        self,
        registry: ClientRegistry,
        rate_limiter: RateLimiter,
        interval: float = 60.0,
        client_timeout: float = 300.0,
        ping_interval: float = 30.0,
    ):
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.interval = interval
        self.client_timeout = client_timeout
        self.ping_interval = ping_interval
        self._running = False

    # ─── Sweep ────────────────────────────────────────────

    async def run_loop(self) -> None:
        """Main loop — sweep every `interval` seconds until stopped."""
        self._running = True
        logger.info("maintenance.started", interval=self.interval)

        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("maintenance.error")

    async def sweep(self) -> int:
        """Run one maintenance pass. Returns the number of evicted clients."""
        evicted = 0
        async with self.registry.lock:
            now = self.registry.clock()
            for client in self.registry.snapshot():
                try:
                    if now - client.last_activity > self.client_timeout:
                        logger.info(
                            "maintenance.client_timed_out",
                            client_id=client.id,
                            idle_seconds=round(now - client.last_activity, 1),
                        )
                        self.registry.remove(client.id)
                        evicted += 1
                        continue

                    self.rate_limiter.reset_if_expired(client.rate_limit, now)
                except Exception:
                    logger.exception("maintenance.client_error", client_id=client.id)

        logger.debug(
            "maintenance.complete",
            active_clients=len(self.registry),
            evicted=evicted,
        )
        return evicted

    def stop(self) -> None:
        """Signal the sweep loop to stop."""
        self._running = False
        logger.info("maintenance.stopping")

    # ─── Heartbeats ───────────────────────────────────────

    def start_heartbeat(self, client_id: str) -> asyncio.Task:
        """Spawn the client's ping task and hand its handle to the registry."""
        task = asyncio.create_task(
            self._heartbeat_loop(client_id),
            name=f"heartbeat:{client_id}",
        )
        self.registry.attach_heartbeat(client_id, task)
        return task

    async def _heartbeat_loop(self, client_id: str) -> None:
        while client_id in self.registry:
            await asyncio.sleep(self.ping_interval)
            await self.ping(client_id)

    async def ping(self, client_id: str) -> bool:
        """Send one ping frame. False if the client is gone or the send failed."""
        async with self.registry.lock:
            client = self.registry.get(client_id)
            if client is None:
                return False
            try:
                return await self.registry.deliver(client, frames.ping_frame())
            except Exception:
                logger.exception("maintenance.ping_error", client_id=client_id)
                return False
