"""FastAPI dependencies for the real-time routes.

Learn: The broadcaster lives on app.state (set by the lifespan, or by a
test before sending requests). Routes receive it through Depends() rather
than importing a module-level instance.
"""

from starlette.requests import HTTPConnection

from hassstream.realtime.broadcaster import Broadcaster


def get_broadcaster(conn: HTTPConnection) -> Broadcaster:
    broadcaster = getattr(conn.app.state, "broadcaster", None)
    if broadcaster is None:
        raise RuntimeError("Broadcaster not initialized. Is the app lifespan running?")
    return broadcaster
