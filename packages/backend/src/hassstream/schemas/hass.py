"""Pydantic schemas for Home Assistant payloads and broadcast statistics.

Learn: Upstream payloads come straight from the Home Assistant event bus
and carry more fields than we forward (entity `context`, event `id`, ...).
extra="ignore" keeps validation strict on the fields we use while
tolerating the rest.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


# ─── Upstream payloads ────────────────────────────────────


class EntityState(BaseModel):
    """Last known state of one entity."""

    entity_id: str = Field(..., min_length=1)
    state: Any = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    last_changed: Optional[str] = None
    last_updated: Optional[str] = None

    model_config = {"extra": "ignore"}

    @property
    def domain(self) -> str:
        """Prefix of the entity id before the first '.'."""
        return self.entity_id.split(".", 1)[0]


class HassEvent(BaseModel):
    event_type: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    origin: Optional[str] = None
    time_fired: Optional[str] = None
    context: Optional[dict[str, Any]] = None

    model_config = {"extra": "ignore"}


# ─── Statistics ───────────────────────────────────────────


class ConnectionAgeBuckets(BaseModel):
    less_than_1m: int = 0
    less_than_5m: int = 0
    less_than_1h: int = 0
    more_than_1h: int = 0


class BroadcastStatistics(BaseModel):
    total_clients: int
    authenticated_clients: int
    total_subscriptions: int
    clients_by_connection_time: ConnectionAgeBuckets
    total_entities_tracked: int


class StatisticsResponse(BaseModel):
    success: bool = True
    statistics: BroadcastStatistics
