"""Read-only statistics snapshot over the connected clients."""

from typing import Iterable

from hassstream.realtime.clients import Client
from hassstream.schemas.hass import BroadcastStatistics, ConnectionAgeBuckets


def compute_statistics(
    clients: Iterable[Client],
    entities_tracked: int,
    now: float,
) -> BroadcastStatistics:
    """Aggregate counts and a connection-age histogram. Mutates nothing."""
    total = 0
    authenticated = 0
    subscriptions = 0
    ages = ConnectionAgeBuckets()

    for client in clients:
        total += 1
        if client.authenticated:
            authenticated += 1
        subscriptions += client.subscriptions.total()

        age = now - client.connected_at
        if age < 60:
            ages.less_than_1m += 1
        elif age < 300:
            ages.less_than_5m += 1
        elif age < 3600:
            ages.less_than_1h += 1
        else:
            ages.more_than_1h += 1

    return BroadcastStatistics(
        total_clients=total,
        authenticated_clients=authenticated,
        total_subscriptions=subscriptions,
        clients_by_connection_time=ages,
        total_entities_tracked=entities_tracked,
    )
