"""Real-time infrastructure — broadcaster + SSE/WebSocket transports.

Learn: Events flow through two halves:
1. Upstream feed → Broadcaster (match subscriptions, rate limit, fan out)
2. Broadcaster → per-client send capability → SSE stream / WebSocket

The broadcaster never knows which transport a client uses; it only holds
an async `send(text)` callable per client.
"""
