"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown:

  startup:  configure logging → build the Broadcaster (unless one was
            already placed on app.state) → start maintenance → start the
            upstream feed if a socket URL is configured
  shutdown: stop feed → stop broadcaster (drops clients, cancels heartbeats)

The Broadcaster is an explicit object on app.state, not a module global,
so tests can install their own instance before sending requests.
"""

import asyncio
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI

from hassstream import __version__
from hassstream.api import api_router
from hassstream.config import settings
from hassstream.log_config import configure_logging
from hassstream.realtime.broadcaster import BroadcastLimits, Broadcaster

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown.
    """
    configure_logging(settings.effective_log_level, json_logs=settings.log_json)
    logger.info(
        "hassstream.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    broadcaster = getattr(app.state, "broadcaster", None)
    if broadcaster is None:
        broadcaster = Broadcaster(
            secret_token=settings.hass_token,
            limits=BroadcastLimits.from_settings(settings),
        )
        app.state.broadcaster = broadcaster
    broadcaster.start()

    feed_task = None
    app.state.feed = None
    if settings.hass_socket_url:
        from hassstream.hass.client import HassWebSocketClient
        from hassstream.hass.feed import HassEventFeed

        feed = HassEventFeed(
            broadcaster,
            client_factory=partial(
                HassWebSocketClient, settings.hass_socket_url, settings.hass_token
            ),
            reconnect_delay=settings.upstream_reconnect_delay_seconds,
            max_reconnect_attempts=settings.upstream_max_reconnect_attempts,
        )
        app.state.feed = feed
        feed_task = asyncio.create_task(feed.run())
        logger.info("hassstream.feed_started", url=settings.hass_socket_url)
    else:
        logger.warning("hassstream.feed_disabled", reason="HASSSTREAM_HASS_SOCKET_URL not set")

    yield

    # Shutdown
    logger.info("hassstream.shutdown")

    if feed_task is not None:
        await app.state.feed.stop()
        feed_task.cancel()
        try:
            await feed_task
        except asyncio.CancelledError:
            pass

    await broadcaster.stop()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="hassstream",
        description="Real-time Home Assistant event streaming over SSE and WebSocket",
        version=__version__,
        lifespan=lifespan,
    )

    from hassstream.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    from hassstream.realtime.sse import router as sse_router
    from hassstream.realtime.websocket import router as ws_router

    app.include_router(sse_router, tags=["events"])
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: hassstream.main:app)
app = create_app()
