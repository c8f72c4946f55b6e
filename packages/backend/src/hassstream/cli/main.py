"""hassstream CLI — run the server, inspect it, watch its event stream.

Usage:
    hassstream serve                                  # Run the API server (uvicorn)
    hassstream stats                                  # Connection statistics
    hassstream listen -e call_service -d light        # Print frames from /subscribe_events
    hassstream health                                 # Server + upstream status
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from hassstream import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("HASSSTREAM_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(timeout: Optional[float] = 30.0) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the hassstream server."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=timeout)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _token_from_ctx(token: Optional[str]) -> str:
    """Resolve the access token from flag or HASSSTREAM_HASS_TOKEN env var."""
    tok = token or os.environ.get("HASSSTREAM_HASS_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set HASSSTREAM_HASS_TOKEN env var)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _frame_color(frame_type: str) -> str:
    colors = {
        "connection": "green",
        "ping": "bright_black",
        "error": "red",
        "state_changed": "cyan",
        "service_called": "yellow",
        "automation_triggered": "magenta",
        "script_executed": "blue",
    }
    return colors.get(frame_type, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="hassstream")
def main():
    """hassstream — real-time Home Assistant event streaming."""


# ---------------------------------------------------------------------------
# hassstream serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: HASSSTREAM_HOST)")
@click.option("--port", "-p", type=int, default=None, help="Port (default: HASSSTREAM_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes (implied by HASSSTREAM_DEBUG)")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server."""
    import uvicorn

    from hassstream.config import settings

    uvicorn.run(
        "hassstream.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload or settings.debug,
        log_level=settings.effective_log_level.lower(),
    )


# ---------------------------------------------------------------------------
# hassstream stats
# ---------------------------------------------------------------------------


@main.command()
@click.option("--token", "-k", help="Access token (or set HASSSTREAM_HASS_TOKEN)")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def stats(token: Optional[str], as_json: bool):
    """Show connection statistics."""
    _run(_stats_impl(_token_from_ctx(token), as_json))


async def _stats_impl(token: str, as_json: bool):
    async with _client() as c:
        r = await c.get("/get_sse_stats", params={"token": token})
        if r.status_code == 401:
            click.secho("Unauthorized: token rejected", fg="red", err=True)
            sys.exit(1)
        r.raise_for_status()
        data = r.json()["statistics"]

    if as_json:
        click.echo(_pretty_json(data))
        return

    click.secho("Clients", bold=True)
    click.echo(f"  total:          {data['total_clients']}")
    click.echo(f"  authenticated:  {data['authenticated_clients']}")
    click.echo(f"  subscriptions:  {data['total_subscriptions']}")
    click.echo(f"  entities seen:  {data['total_entities_tracked']}")
    click.echo()
    click.secho("Connection age", bold=True)
    ages = data["clients_by_connection_time"]
    click.echo(f"  < 1m:   {ages['less_than_1m']}")
    click.echo(f"  < 5m:   {ages['less_than_5m']}")
    click.echo(f"  < 1h:   {ages['less_than_1h']}")
    click.echo(f"  >= 1h:  {ages['more_than_1h']}")


# ---------------------------------------------------------------------------
# hassstream listen
# ---------------------------------------------------------------------------


@main.command()
@click.option("--token", "-k", help="Access token (or set HASSSTREAM_HASS_TOKEN)")
@click.option("--event", "-e", "events", multiple=True, help="Event type (repeatable)")
@click.option("--entity-id", help="Entity to follow, e.g. light.kitchen")
@click.option("--domain", "-d", help="Domain to follow, e.g. light")
@click.option("--no-ping", is_flag=True, help="Hide ping frames")
def listen(token: Optional[str], events: tuple[str, ...], entity_id: Optional[str],
           domain: Optional[str], no_ping: bool):
    """Print frames from the event stream until interrupted."""
    params = {"token": _token_from_ctx(token)}
    if events:
        params["events"] = ",".join(events)
    if entity_id:
        params["entity_id"] = entity_id
    if domain:
        params["domain"] = domain

    try:
        _run(_listen_impl(params, no_ping))
    except KeyboardInterrupt:
        click.echo()


async def _listen_impl(params: dict, no_ping: bool):
    async with _client(timeout=None) as c:
        async with c.stream("GET", "/subscribe_events", params=params) as r:
            if r.status_code != 200:
                await r.aread()
                click.secho(f"Error {r.status_code}: {r.text}", fg="red", err=True)
                sys.exit(1)

            async for line in r.aiter_lines():
                if not line.startswith("data: "):
                    continue
                frame = json.loads(line[len("data: "):])
                frame_type = frame.get("type", "?")
                if no_ping and frame_type == "ping":
                    continue
                label = click.style(f"{frame_type:22s}", fg=_frame_color(frame_type))
                body = frame.get("data", {k: v for k, v in frame.items() if k != "type"})
                click.echo(f"{frame.get('timestamp', '')}  {label}  {json.dumps(body, default=str)}")


# ---------------------------------------------------------------------------
# hassstream health
# ---------------------------------------------------------------------------


@main.command()
def health():
    """Show server and upstream feed status."""
    _run(_health_impl())


async def _health_impl():
    async with _client() as c:
        r = await c.get("/api/v1/health")
        r.raise_for_status()
        data = r.json()

    color = "green" if data["status"] == "healthy" else "yellow"
    click.secho(f"{data['status']}  (v{data['version']})", fg=color, bold=True)
    click.echo(f"  upstream: {data['upstream']}")
    click.echo(f"  clients:  {data['clients']}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
