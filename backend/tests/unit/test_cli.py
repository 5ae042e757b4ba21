"""
Unit Tests for the SchoolFeed CLI
"""
import httpx
import pytest
from datetime import timedelta

from rich.console import Console

from schoolfeed.cli import (
    DEFAULT_USER,
    build_feed_table,
    build_metrics_table,
    create_parser,
    main,
    run_metrics,
    run_reset,
)
from schoolfeed.models.notification import NotificationItem, NotificationType, Priority


def render(table) -> str:
    console = Console(record=True, width=160)
    console.print(table)
    return console.export_text()


class TestParser:

    def test_show_defaults(self):
        args = create_parser().parse_args(["show"])
        assert args.command == "show"
        assert args.user == DEFAULT_USER
        assert args.unread is False

    def test_reset_flags(self):
        args = create_parser().parse_args(["reset", "-u", "teacher-3", "--metrics-only"])
        assert args.user == "teacher-3"
        assert args.metrics_only is True

    def test_metrics_url(self):
        args = create_parser().parse_args(["metrics", "--url", "http://feeds:9000"])
        assert args.url == "http://feeds:9000"

    def test_serve_port(self):
        args = create_parser().parse_args(["serve", "--port", "9001"])
        assert args.port == 9001

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "schoolfeed" in capsys.readouterr().out


class TestTables:

    def test_feed_table_rows(self, clock):
        items = [
            NotificationItem(
                id="scheduled-1",
                type=NotificationType.SCHEDULED_ITEM,
                title="Test: Fractions",
                message="Date: 11/03/2025 - Mathematics",
                timestamp=clock.now(),
                priority=Priority.URGENT,
                category="Agenda",
            ),
            NotificationItem(
                id="message-2",
                type=NotificationType.MESSAGE,
                title="Trip consent",
                message="Please sign",
                timestamp=clock.now() - timedelta(days=1),
                read=True,
                category="Communication",
            ),
        ]

        table = build_feed_table(items, title="Feed")
        text = render(table)

        assert table.row_count == 2
        assert "Test: Fractions" in text
        assert "urgent" in text
        assert "10/03/2025 12:00" in text

    def test_metrics_table(self):
        text = render(build_metrics_table({"last_refresh": None, "total_refreshes": 4}))
        assert "total_refreshes" in text
        assert "4" in text


class TestServiceCommands:
    """metrics and reset --metrics-only talk to the running service"""

    def _transport(self, calls, snapshot=None, status_code=200):
        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path, request.headers.get("X-User-Id")))
            return httpx.Response(status_code, json=snapshot or {})
        return httpx.MockTransport(handler)

    def test_metrics_reads_running_service(self):
        calls = []
        snapshot = {"last_refresh": "2025-03-10T12:00:00+00:00", "total_refreshes": 17}
        console = Console(record=True, width=160)

        code = run_metrics(console, "teacher-3", "http://feeds", transport=self._transport(calls, snapshot))

        assert code == 0
        assert calls == [("GET", "/api/v1/notifications/metrics", "teacher-3")]
        assert "17" in console.export_text()

    def test_metrics_only_reset_posts_to_service(self):
        calls = []
        console = Console(record=True, width=160)

        code = run_reset(
            console, "teacher-3", metrics_only=True, base_url="http://feeds",
            transport=self._transport(calls, {"total_refreshes": 0}),
        )

        assert code == 0
        assert calls == [("POST", "/api/v1/notifications/metrics/reset", "teacher-3")]
        assert "Metrics reset for teacher-3" in console.export_text()

    def test_unreachable_service_fails(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        console = Console(record=True, width=160)
        code = run_metrics(console, "teacher-3", "http://feeds", transport=httpx.MockTransport(handler))

        assert code == 1
        assert "unreachable" in console.export_text()

    def test_error_status_fails(self):
        console = Console(record=True, width=160)
        code = run_reset(
            console, "teacher-3", metrics_only=True, base_url="http://feeds",
            transport=self._transport([], status_code=500),
        )

        assert code == 1
        assert "500" in console.export_text()
