"""hassstream — real-time event streaming for Home Assistant.

Pushes state changes and bus events from a Home Assistant controller to
many connected observers (SSE and WebSocket), each with its own
authentication, subscriptions, and delivery budget.
"""

__version__ = "0.1.0"
