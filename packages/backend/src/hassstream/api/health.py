"""Health check endpoint.

Learn: Reports the server version, how many clients are connected, and
the state of the upstream Home Assistant feed. The feed is optional, so a
missing feed is "disabled" rather than an error.
"""

from fastapi import APIRouter, Depends, Request

from hassstream import __version__
from hassstream.realtime.broadcaster import Broadcaster
from hassstream.realtime.dependencies import get_broadcaster

router = APIRouter()


@router.get("/health")
async def health_check(
    request: Request,
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Check server health and upstream connectivity."""
    checks = {"server": "ok", "version": __version__}

    feed = getattr(request.app.state, "feed", None)
    checks["upstream"] = feed.status if feed is not None else "disabled"
    checks["clients"] = broadcaster.connected_clients

    status = "healthy" if checks["upstream"] in ("connected", "disabled") else "degraded"
    return {"status": status, **checks}
