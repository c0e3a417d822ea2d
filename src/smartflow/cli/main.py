"""SmartFlow CLI — run the notification backend and talk to it.

Usage:
    smartflow serve                              # Run the API with uvicorn
    smartflow init-db                            # Create missing tables
    smartflow inbox                              # Your notifications
    smartflow unread                             # Unread count
    smartflow read 42                            # Mark one read
    smartflow read-all                           # Mark everything read
    smartflow send "Maintenance" "Down at 2am" -u 7 -u 9 --general
    smartflow tail                               # Follow the live stream

Client commands need SMARTFLOW_TOKEN (a JWT access token) and read the
backend address from SMARTFLOW_API_URL.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Iterable, Iterator, Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:5000"


def _api_url() -> str:
    return os.environ.get("SMARTFLOW_API_URL", DEFAULT_API_URL).rstrip("/")


def _token() -> str:
    token = os.environ.get("SMARTFLOW_TOKEN")
    if not token:
        click.secho("Error: set SMARTFLOW_TOKEN to a JWT access token", fg="red", err=True)
        sys.exit(1)
    return token


def _client(timeout: Optional[float] = 30.0) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the SmartFlow backend."""
    return httpx.AsyncClient(
        base_url=_api_url(),
        headers={"Authorization": f"Bearer {_token()}"},
        timeout=timeout,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    return asyncio.run(coro)


def parse_sse(lines: Iterable[str]) -> Iterator[tuple[str, dict]]:
    """Turn text/event-stream lines into (event, data) pairs.

    Comment lines (": keep-alive") are skipped. An event without an
    explicit name is called "message", as in the browser EventSource.
    """
    event, data = "message", []
    for line in lines:
        if line == "":
            if data:
                yield event, json.loads("\n".join(data))
            event, data = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:"):].strip())


def _print_notification(n: dict) -> None:
    marker = " " if n.get("read") else click.style("●", fg="yellow")
    sender = n.get("senderName") or "system"
    click.echo(
        f"{marker} #{n['id']:<6} {str(n.get('timestamp', ''))[:19]:19s}  "
        f"{n['title']}  — {sender}"
    )
    click.echo(f"    {n['message']}")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="smartflow")
def main():
    """SmartFlow — in-app notifications with live delivery."""


@main.command()
@click.option("--host", default=None, help="Bind address (default: SMARTFLOW_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: SMARTFLOW_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server."""
    import uvicorn

    from smartflow.config import settings

    # One worker: the push registry lives in process memory.
    uvicorn.run(
        "smartflow.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        # http.request (RequestIdMiddleware) logs the path only; uvicorn's
        # access log would print the stream's ?token= query string.
        access_log=False,
    )


@main.command("init-db")
def init_db():
    """Create any missing database tables."""
    from smartflow.db.engine import create_tables, engine

    async def _init():
        await create_tables()
        await engine.dispose()

    _run(_init())
    click.secho("Tables ready.", fg="green")


@main.command()
@click.option("--limit", "-n", default=None, type=int, help="Max notifications")
def inbox(limit: Optional[int]):
    """List your notifications, newest first."""
    _run(_inbox_impl(limit))


async def _inbox_impl(limit: Optional[int]):
    async with _client() as c:
        params = {"limit": limit} if limit else None
        r = await c.get("/api/v1/notifications", params=params)
        r.raise_for_status()
        notifications = r.json()

    if not notifications:
        click.echo("No notifications.")
        return
    for n in notifications:
        _print_notification(n)


@main.command()
def unread():
    """Show how many notifications are unread."""
    _run(_unread_impl())


async def _unread_impl():
    async with _client() as c:
        r = await c.get("/api/v1/notifications/unread-count")
        r.raise_for_status()
    click.echo(r.json()["count"])


@main.command()
@click.argument("notification_id", type=int)
def read(notification_id: int):
    """Mark one notification as read."""
    _run(_read_impl(notification_id))


async def _read_impl(notification_id: int):
    async with _client() as c:
        r = await c.put(f"/api/v1/notifications/{notification_id}/read")
    if r.status_code == 404:
        click.secho(f"Notification #{notification_id} not found", fg="red", err=True)
        sys.exit(1)
    r.raise_for_status()
    click.secho(f"#{notification_id} marked as read", fg="green")


@main.command("read-all")
def read_all():
    """Mark every notification as read."""
    _run(_read_all_impl())


async def _read_all_impl():
    async with _client() as c:
        r = await c.put("/api/v1/notifications/read-all")
        r.raise_for_status()
    click.secho(f"{r.json()['updated']} marked as read", fg="green")


@main.command()
@click.argument("title")
@click.argument("content")
@click.option("--user", "-u", "user_ids", multiple=True, type=int, required=True,
              help="Recipient user id (repeatable)")
@click.option("--general", is_flag=True, help="Send as a general announcement")
def send(title: str, content: str, user_ids: tuple[int, ...], general: bool):
    """Send an admin message to one or more users."""
    _run(_send_impl(title, content, list(user_ids), general))


async def _send_impl(title: str, content: str, user_ids: list[int], general: bool):
    async with _client() as c:
        r = await c.post("/api/v1/notifications/admin-message", json={
            "title": title,
            "content": content,
            "userIds": user_ids,
            "isGeneral": general,
        })
        r.raise_for_status()
        result = r.json()
    click.secho(f"Sent to {result['sentTo']} user(s)", fg="green")
    for u in result["users"]:
        click.echo(f"  {u['id']:<6} {u['name']}  <{u['email']}>")


@main.command()
def tail():
    """Follow the live notification stream (Ctrl-C to stop)."""
    try:
        _run(_tail_impl())
    except KeyboardInterrupt:
        pass


async def _tail_impl():
    token = _token()
    async with httpx.AsyncClient(base_url=_api_url(), timeout=None) as c:
        async with c.stream(
            "GET", "/api/v1/notifications/stream", params={"token": token}
        ) as r:
            if r.status_code == 401:
                click.secho("Token rejected", fg="red", err=True)
                sys.exit(1)
            r.raise_for_status()
            click.secho("Listening for notifications...", bold=True)

            buffer: list[str] = []
            async for line in r.aiter_lines():
                buffer.append(line)
                if line != "":
                    continue
                for event, data in parse_sse(buffer):
                    if event == "notification":
                        _print_notification(data)
                buffer.clear()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
