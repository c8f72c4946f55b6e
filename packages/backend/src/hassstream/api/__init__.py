"""API route aggregation.

All routers registered here get mounted in main.py. The SSE and
WebSocket routes live at the root (not under /api/v1) so existing event
stream clients keep their URLs.
"""

from fastapi import APIRouter

from hassstream.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
