#!/usr/bin/env python3
"""
SchoolFeed CLI

Usage:
    schoolfeed show --user u-1          # Render the feed as a table
    schoolfeed show --user u-1 --unread # Only unread notifications
    schoolfeed metrics --user u-1       # Metrics of the running service
    schoolfeed reset --user u-1         # Forget read-state and snapshot
    schoolfeed reset --metrics-only     # Reset the running service's counters
    schoolfeed serve --port 8000        # Run the HTTP API
"""

import argparse
import asyncio
import sys
from typing import Iterable, Optional

import httpx
from rich.console import Console
from rich.table import Table

from schoolfeed.core.config import settings
from schoolfeed.models.notification import NotificationItem, Priority
from schoolfeed.services.notification_feed import NotificationFeedService
from schoolfeed.services.runtime import FeedRuntime

DEFAULT_USER = "local"
DEFAULT_SERVICE_URL = f"http://127.0.0.1:{settings.SERVER_PORT}"
NOTIFICATIONS_PATH = f"/api/{settings.API_VERSION}/notifications"

PRIORITY_STYLES = {
    Priority.URGENT: "bold red",
    Priority.HIGH: "yellow",
    Priority.NORMAL: "white",
    Priority.LOW: "dim",
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog="schoolfeed",
        description="SchoolFeed - unified school notification feed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  schoolfeed show --user teacher-42            Show the feed
  schoolfeed show --unread                     Only unread items
  schoolfeed metrics --url http://host:8000     Counters of a running service
  schoolfeed reset --metrics-only              Reset the service counters only
  schoolfeed serve --host 127.0.0.1            Run the API server
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    show_parser = subparsers.add_parser("show", help="Render the notification feed")
    show_parser.add_argument("--user", "-u", default=DEFAULT_USER, help="User identity")
    show_parser.add_argument("--unread", action="store_true", help="Only unread notifications")

    metrics_parser = subparsers.add_parser("metrics", help="Print the refresh metrics")
    metrics_parser.add_argument("--user", "-u", default=DEFAULT_USER, help="User identity")
    metrics_parser.add_argument("--url", default=DEFAULT_SERVICE_URL, help="Running SchoolFeed service")

    reset_parser = subparsers.add_parser("reset", help="Reset feed state")
    reset_parser.add_argument("--user", "-u", default=DEFAULT_USER, help="User identity")
    reset_parser.add_argument("--metrics-only", action="store_true", help="Only reset the running service's counters")
    reset_parser.add_argument("--url", default=DEFAULT_SERVICE_URL, help="Running SchoolFeed service")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=settings.SERVER_HOST, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=settings.SERVER_PORT, help="Bind port")

    return parser


def build_feed_table(items: Iterable[NotificationItem], title: str = "Notifications") -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("", width=1)
    table.add_column("When", style="dim")
    table.add_column("Category")
    table.add_column("Title")
    table.add_column("Message")
    table.add_column("Priority")

    for item in items:
        style = PRIORITY_STYLES.get(item.priority, "white")
        table.add_row(
            " " if item.read else "•",
            item.timestamp.strftime("%d/%m/%Y %H:%M"),
            item.category,
            item.title,
            item.message,
            f"[{style}]{item.priority.value}[/{style}]",
        )
    return table


def build_metrics_table(snapshot: dict) -> Table:
    table = Table(title="Feed Metrics", show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for name, value in snapshot.items():
        table.add_row(name, "-" if value is None else str(value))
    return table


async def _with_feed(user_id: str, action) -> None:
    runtime = await FeedRuntime.build(settings)
    feed: Optional[NotificationFeedService] = None
    try:
        feed = runtime.new_feed(user_id)
        await feed.start()
        await action(feed)
    finally:
        if feed is not None:
            await feed.close()
        await runtime.close()


def run_show(console: Console, user_id: str, unread_only: bool) -> None:
    async def action(feed: NotificationFeedService) -> None:
        items = [item for item in feed.notifications if not (unread_only and item.read)]
        if not items:
            console.print("[dim]No notifications[/dim]")
            return
        console.print(build_feed_table(items, title=f"Notifications for {user_id}"))
        console.print(f"\n[bold]{feed.unread_count}[/bold] unread of {len(feed.notifications)}")

    asyncio.run(_with_feed(user_id, action))


async def service_metrics(
    base_url: str,
    user_id: str,
    reset: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """
    Metrics snapshot of `user_id`'s feed in a running service.

    Counters only exist inside the serving process, so both reading and
    resetting them go through the API.
    """
    headers = {"X-User-Id": user_id}
    async with httpx.AsyncClient(base_url=base_url, transport=transport, timeout=10.0) as client:
        if reset:
            response = await client.post(f"{NOTIFICATIONS_PATH}/metrics/reset", headers=headers)
        else:
            response = await client.get(f"{NOTIFICATIONS_PATH}/metrics", headers=headers)
        response.raise_for_status()
        return response.json()


def _service_snapshot(
    console: Console,
    base_url: str,
    user_id: str,
    reset: bool,
    transport: Optional[httpx.AsyncBaseTransport],
) -> Optional[dict]:
    try:
        return asyncio.run(service_metrics(base_url, user_id, reset=reset, transport=transport))
    except httpx.HTTPStatusError as e:
        console.print(f"[red]✗ Service answered {e.response.status_code} at {base_url}[/red]")
    except httpx.HTTPError as e:
        console.print(f"[red]✗ SchoolFeed service unreachable at {base_url}: {e}[/red]")
        console.print("[dim]Start it with: schoolfeed serve[/dim]")
    return None


def run_metrics(
    console: Console,
    user_id: str,
    base_url: str = DEFAULT_SERVICE_URL,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    snapshot = _service_snapshot(console, base_url, user_id, reset=False, transport=transport)
    if snapshot is None:
        return 1
    console.print(build_metrics_table(snapshot))
    return 0


def run_reset(
    console: Console,
    user_id: str,
    metrics_only: bool,
    base_url: str = DEFAULT_SERVICE_URL,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    if metrics_only:
        if _service_snapshot(console, base_url, user_id, reset=True, transport=transport) is None:
            return 1
        console.print(f"[green]✓ Metrics reset for {user_id}[/green]")
        return 0

    async def action(feed: NotificationFeedService) -> None:
        await feed.reset_all()

    asyncio.run(_with_feed(user_id, action))
    console.print(f"[green]✓ Feed state reset for {user_id}[/green]")
    return 0


def run_serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run(
        "schoolfeed.main:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=settings.LOG_LEVEL.lower(),
    )


def main(argv: Optional[list] = None) -> int:
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)
    console = Console()

    if args.command == "show":
        run_show(console, args.user, args.unread)
    elif args.command == "metrics":
        return run_metrics(console, args.user, args.url)
    elif args.command == "reset":
        return run_reset(console, args.user, args.metrics_only, args.url)
    elif args.command == "serve":
        run_serve(args.host, args.port)
    else:
        parser.print_help()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
