"""Upstream feed — Home Assistant WebSocket API → Broadcaster.

Learn: HassWebSocketClient speaks the Home Assistant WebSocket protocol
(auth handshake, numbered commands, event messages). HassEventFeed owns
the reconnect loop and routes each event to the matching broadcast_*()
call.
"""
