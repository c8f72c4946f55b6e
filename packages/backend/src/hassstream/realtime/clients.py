"""Per-connection client state.

Learn: A Client is plain data. Only the ClientRegistry creates or deletes
one, and only operations addressed to a client's id touch its
subscriptions or rate-limit counters.

`send` is the transport's capability to deliver one text frame. It is an
async callable that raises when the connection is broken; the registry
treats any exception from it as fatal for that client.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable

SendCapability = Callable[[str], Awaitable[None]]


@dataclass
class Subscriptions:
    """The three independent interest sets of one client."""

    entities: set[str] = field(default_factory=set)
    domains: set[str] = field(default_factory=set)
    events: set[str] = field(default_factory=set)

    def total(self) -> int:
        return len(self.entities) + len(self.domains) + len(self.events)

    def matches_state_change(self, entity_id: str, domain: str) -> bool:
        return (
            entity_id in self.entities
            or domain in self.domains
            or "state_changed" in self.events
        )

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "entities": sorted(self.entities),
            "domains": sorted(self.domains),
            "events": sorted(self.events),
        }


@dataclass
class RateLimitState:
    count: int = 0
    window_start: float = 0.0


@dataclass
class Client:
    id: str
    send: SendCapability
    authenticated: bool
    connected_at: float
    last_activity: float
    subscriptions: Subscriptions = field(default_factory=Subscriptions)
    rate_limit: RateLimitState = field(default_factory=RateLimitState)
