"""SpinEarn CLI — admin messages, unread badge, leaderboard, withdrawals.

Usage:
    spinearn health                                  # Server + dependency status
    spinearn messages                                # Your latest admin messages
    spinearn unread                                  # Your unread count
    spinearn read <message-id>                       # Mark one message read
    spinearn read-all                                # Mark everything read
    spinearn broadcast "Title" "Body" --type info    # Admin: message every user
    spinearn send "Title" "Body" -u <uuid> -u <uuid> # Admin: message some users
    spinearn snapshot                                # Admin: snapshot today's top users
    spinearn purge-read --days 60                    # Admin: delete old read messages
    spinearn withdrawals --status pending            # Admin: withdrawal queue
    spinearn approve <withdrawal-id> --notes "..."   # Admin: approve + message player
    spinearn reject <withdrawal-id> --notes "..."    # Admin: reject
    spinearn leaderboard 2026-10-19                  # A day's snapshot
    spinearn stats                                   # Admin: live synchronizers

Point it at a server with SPINEARN_API_URL and authenticate with
SPINEARN_TOKEN (a JWT from the auth provider).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from datetime import date, datetime, timezone
from typing import Optional

import click
import httpx

from spinearn import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("SPINEARN_API_URL", DEFAULT_API_URL).rstrip("/")


def _headers() -> dict[str, str]:
    token = os.environ.get("SPINEARN_TOKEN")
    return {"Authorization": f"Bearer {token}"} if token else {}


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the SpinEarn backend."""
    return httpx.AsyncClient(base_url=_api_url(), headers=_headers(), timeout=30.0)


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


def _check(r: httpx.Response) -> None:
    """Exit with the server's error detail on a non-2xx response."""
    if r.is_success:
        return
    try:
        detail = r.json().get("detail", r.text)
    except ValueError:
        detail = r.text
    click.secho(f"Error {r.status_code}: {detail}", fg="red", err=True)
    sys.exit(1)


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(
            str(row.get(k) if row.get(k) is not None else "-")[:w].ljust(w)
            for _, k, w in columns
        )
        click.echo(line)


def _type_color(message_type: str) -> str:
    return {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red",
    }.get(message_type, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="spinearn")
def main():
    """SpinEarn — admin messages and daily leaderboards."""


# ---------------------------------------------------------------------------
# spinearn health
# ---------------------------------------------------------------------------


@main.command()
def health():
    """Show server and dependency status."""
    _run(_health_impl())


async def _health_impl():
    async with _client() as c:
        r = await c.get("/api/v1/health")
        _check(r)
        data = r.json()

    status = data.get("status", "unknown")
    click.secho(
        f"SpinEarn {data.get('version', '?')}: {status}",
        fg="green" if status == "healthy" else "yellow",
        bold=True,
    )
    for key in ("server", "postgres", "redis", "change_feed"):
        value = data.get(key, "-")
        click.echo(f"  {key:12s} {click.style(value, fg='green' if value == 'ok' else 'red')}")


# ---------------------------------------------------------------------------
# spinearn messages / unread / read / read-all
# ---------------------------------------------------------------------------


@main.command()
@click.option("--limit", "-l", default=20, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def messages(limit: int, as_json: bool):
    """List your latest admin messages."""
    _run(_messages_impl(limit, as_json))


async def _messages_impl(limit: int, as_json: bool):
    async with _client() as c:
        r = await c.get("/api/v1/messages", params={"limit": limit})
        _check(r)
        rows = r.json()

    if as_json:
        click.echo(_pretty_json(rows))
        return
    if not rows:
        click.echo("No messages.")
        return

    unread = sum(1 for m in rows if not m["read"])
    click.secho(f"Messages ({len(rows)}, {unread} unread):", bold=True)
    click.echo()
    for m in rows:
        marker = " " if m["read"] else click.style("*", fg="yellow", bold=True)
        kind = click.style(f"{m['message_type']:8s}", fg=_type_color(m["message_type"]))
        sent = (m.get("sent_at") or "")[:16].replace("T", " ")
        click.echo(f"  {marker} {m['id'][:8]}  {kind}  {sent:16s}  {m['title'][:60]}")


@main.command()
def unread():
    """Show your unread message count."""
    _run(_unread_impl())


async def _unread_impl():
    async with _client() as c:
        r = await c.get("/api/v1/messages/unread-count")
        _check(r)
        data = r.json()
    click.echo(f"{data['count']} unread ({data['source']})")


@main.command()
@click.argument("message_id")
def read(message_id: str):
    """Mark MESSAGE_ID as read."""
    _run(_read_impl(message_id))


async def _read_impl(message_id: str):
    async with _client() as c:
        r = await c.post(f"/api/v1/messages/{message_id}/read")
        _check(r)
        msg = r.json()
    click.secho(f"Marked read: {msg['title']}", fg="green")


@main.command("read-all")
def read_all():
    """Mark every message as read."""
    _run(_read_all_impl())


async def _read_all_impl():
    async with _client() as c:
        r = await c.post("/api/v1/messages/read-all")
        _check(r)
        data = r.json()
    click.secho(f"Marked {data['updated']} message(s) read", fg="green")


# ---------------------------------------------------------------------------
# spinearn broadcast / send (admin)
# ---------------------------------------------------------------------------

_type_option = click.option(
    "--type", "-t", "message_type",
    type=click.Choice(["info", "success", "warning", "error"]),
    default="info",
    show_default=True,
    help="Message type",
)


@main.command()
@click.argument("title")
@click.argument("message")
@_type_option
@click.option("--image-url", help="Optional image to show with the message")
def broadcast(title: str, message: str, message_type: str, image_url: Optional[str]):
    """Send TITLE / MESSAGE to every user (admin only)."""
    _run(_send_impl("/api/v1/admin/messages/broadcast", {
        "title": title,
        "message": message,
        "message_type": message_type,
        "image_url": image_url,
    }))


@main.command()
@click.argument("title")
@click.argument("message")
@click.option("--user", "-u", "user_ids", multiple=True, required=True,
              help="Recipient user UUID (repeatable)")
@_type_option
@click.option("--image-url", help="Optional image to show with the message")
def send(title: str, message: str, user_ids: tuple[str, ...], message_type: str,
         image_url: Optional[str]):
    """Send TITLE / MESSAGE to selected users (admin only)."""
    _run(_send_impl("/api/v1/admin/messages", {
        "title": title,
        "message": message,
        "message_type": message_type,
        "image_url": image_url,
        "user_ids": list(user_ids),
    }))


async def _send_impl(path: str, body: dict):
    async with _client() as c:
        r = await c.post(path, json=body)
        _check(r)
        data = r.json()
    click.secho(f"Sent to {data['recipients']} user(s)", fg="green")


# ---------------------------------------------------------------------------
# spinearn snapshot / leaderboard
# ---------------------------------------------------------------------------


@main.command()
def snapshot():
    """Snapshot today's leaderboard (admin only, once per day)."""
    _run(_snapshot_impl())


async def _snapshot_impl():
    async with _client() as c:
        r = await c.post("/api/v1/admin/leaderboard/snapshot")
        _check(r)
        data = r.json()
    if data["created"]:
        click.secho(
            f"Snapshot for {data['leaderboard_date']}: {data['count']} user(s)",
            fg="green",
        )
    else:
        click.secho(f"Snapshot for {data['leaderboard_date']} already exists", fg="yellow")


@main.command()
@click.argument("day", required=False)
def leaderboard(day: Optional[str]):
    """Show the snapshot for DAY (YYYY-MM-DD, default today UTC)."""
    if day is None:
        day = datetime.now(timezone.utc).date().isoformat()
    else:
        try:
            day = date.fromisoformat(day).isoformat()
        except ValueError:
            raise click.BadParameter(f"'{day}' is not a YYYY-MM-DD date", param_hint="DAY")
    _run(_leaderboard_impl(day))


async def _leaderboard_impl(day: str):
    async with _client() as c:
        r = await c.get(f"/api/v1/leaderboard/{day}")
        _check(r)
        rows = r.json()

    if not rows:
        click.echo(f"No snapshot for {day}.")
        return

    click.secho(f"Leaderboard {day}:", bold=True)
    click.echo()
    _print_table(rows, [
        ("#", "rank", 4),
        ("Name", "name", 24),
        ("Coins", "coins", 10),
        ("User", "user_id", 36),
    ])


# ---------------------------------------------------------------------------
# spinearn purge-read (admin)
# ---------------------------------------------------------------------------


@main.command("purge-read")
@click.option("--days", type=click.IntRange(min=1), default=None,
              help="Retention window in days (server default: 60)")
def purge_read(days: Optional[int]):
    """Delete read messages older than the retention window (admin only)."""
    _run(_purge_read_impl(days))


async def _purge_read_impl(days: Optional[int]):
    params = {"older_than_days": days} if days is not None else {}
    async with _client() as c:
        r = await c.post("/api/v1/admin/messages/purge-read", params=params)
        _check(r)
        data = r.json()
    click.secho(
        f"Deleted {data['deleted']} read message(s) older than "
        f"{data['older_than_days']} day(s)",
        fg="green",
    )


# ---------------------------------------------------------------------------
# spinearn withdrawals / approve / reject (admin)
# ---------------------------------------------------------------------------


def _status_color(status: str) -> str:
    return {"pending": "yellow", "completed": "green", "rejected": "red"}.get(status, "white")


@main.command()
@click.option("--status", "-s",
              type=click.Choice(["pending", "completed", "rejected"]),
              default="pending", show_default=True)
@click.option("--limit", "-n", default=50, show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def withdrawals(status: str, limit: int, as_json: bool):
    """List withdrawal requests (admin only)."""
    _run(_withdrawals_impl(status, limit, as_json))


async def _withdrawals_impl(status: str, limit: int, as_json: bool):
    async with _client() as c:
        r = await c.get("/api/v1/admin/withdrawals", params={"status": status, "limit": limit})
        _check(r)
        rows = r.json()

    if as_json:
        click.echo(_pretty_json(rows))
        return
    if not rows:
        click.echo(f"No {status} withdrawals.")
        return

    _print_table(rows, [
        ("ID", "id", 36),
        ("User", "user_id", 36),
        ("Coins", "coin_amount", 8),
        ("eSewa", "esewa_number", 12),
        ("Status", "status", 10),
    ])


@main.command()
@click.argument("withdrawal_id")
@click.option("--notes", help="Note shown to the player")
def approve(withdrawal_id: str, notes: Optional[str]):
    """Approve WITHDRAWAL_ID and message the player (admin only)."""
    _run(_decide_impl(withdrawal_id, "approve", notes))


@main.command()
@click.argument("withdrawal_id")
@click.option("--notes", help="Reason shown to the player")
def reject(withdrawal_id: str, notes: Optional[str]):
    """Reject WITHDRAWAL_ID (admin only)."""
    _run(_decide_impl(withdrawal_id, "reject", notes))


async def _decide_impl(withdrawal_id: str, action: str, notes: Optional[str]):
    async with _client() as c:
        r = await c.post(
            f"/api/v1/admin/withdrawals/{withdrawal_id}/{action}",
            json={"notes": notes},
        )
        _check(r)
        data = r.json()
    click.echo(
        f"Withdrawal {data['id']}: "
        + click.style(data["status"], fg=_status_color(data["status"]))
        + f" ({data['coin_amount']} coins)"
    )


# ---------------------------------------------------------------------------
# spinearn stats (admin)
# ---------------------------------------------------------------------------


@main.command()
def stats():
    """Show live unread synchronizers on the server (admin only)."""
    _run(_stats_impl())


async def _stats_impl():
    async with _client() as c:
        r = await c.get("/api/v1/admin/realtime/stats")
        _check(r)
        data = r.json()

    feed = click.style(
        "connected" if data["connected"] else "disconnected",
        fg="green" if data["connected"] else "red",
    )
    click.echo(f"  change feed    {feed}")
    click.echo(f"  users          {data['users']}")
    click.echo(f"  consumers      {data['consumers']}")
    click.echo(f"  subscriptions  {data['subscriptions']}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
