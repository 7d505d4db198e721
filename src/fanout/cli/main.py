"""Fanout CLI — publish events, check health, run the dispatcher.

Usage:
    fanout publish chat --payload '{"type": "greeting", "text": "hi"}'
    fanout health
    fanout serve                   # API + WebSocket server (uvicorn)
    fanout dispatcher              # standalone Redis-fed dispatcher
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("FANOUT_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the fanout server."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. Click CliRunner inside an async test)
    by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="fanout")
def main():
    """Fanout — deliver published events to subscribed connections."""


@main.command()
@click.argument("event")
@click.option("--payload", "-p", default="null", help="Event payload as JSON")
def publish(event: str, payload: str):
    """Publish EVENT to its subscribers."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        click.secho(f"Error: --payload is not valid JSON ({e})", fg="red", err=True)
        sys.exit(1)
    _run(_publish_impl(event, data))


async def _publish_impl(event: str, data):
    async with _client() as c:
        r = await c.post("/api/v1/events", json={"event": event, "payload": data})
        if r.status_code == 422:
            click.secho(f"Rejected: {_pretty_json(r.json())}", fg="red", err=True)
            sys.exit(1)
        r.raise_for_status()
        result = r.json()

    if result.get("queued"):
        click.secho(f"Queued '{event}' ({result.get('receivers', 0)} worker(s))", fg="green")
    else:
        click.secho(
            f"Dispatched '{event}': sent={result['sent']} "
            f"skipped={result['skipped']} failed={result['failed']}",
            fg="green" if not result["failed"] else "yellow",
        )


@main.command()
def health():
    """Show server health."""
    _run(_health_impl())


async def _health_impl():
    async with _client() as c:
        r = await c.get("/api/v1/health")
        r.raise_for_status()
        data = r.json()
    color = "green" if data.get("status") == "healthy" else "yellow"
    click.secho(f"Status: {data.get('status')}", fg=color, bold=True)
    click.echo(_pretty_json(data))


@main.command()
@click.option("--host", default=None, help="Bind host (default: FANOUT_HOST)")
@click.option("--port", default=None, type=int, help="Bind port (default: FANOUT_PORT)")
def serve(host: str | None, port: int | None):
    """Run the API + WebSocket server."""
    import uvicorn

    from fanout.config import settings

    uvicorn.run(
        "fanout.main:app",
        host=host or settings.host,
        port=port or settings.port,
    )


@main.command()
def dispatcher():
    """Run a standalone dispatcher fed by the Redis events channel."""
    from fanout.dispatcher.main import main as run_dispatcher

    run_dispatcher()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
