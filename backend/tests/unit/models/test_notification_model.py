"""
Unit Tests for the notification domain types
"""
import pytest
from datetime import datetime, timezone

from schoolfeed.core.exceptions import UnknownNotificationTypeError
from schoolfeed.models.notification import (
    TYPE_DISPLAY,
    NotificationItem,
    NotificationType,
    Priority,
    build_notification_id,
    display_for,
    parse_notification_id,
)


class TestTypeDisplay:

    def test_every_type_has_display_metadata(self):
        assert set(TYPE_DISPLAY) == set(NotificationType)

    def test_display_for_unknown_raises(self):
        with pytest.raises(UnknownNotificationTypeError):
            display_for("homework")

    def test_system_display(self):
        display = display_for(NotificationType.SYSTEM)
        assert display.category == "System"
        assert display.icon == "settings"


class TestNotificationIds:

    def test_build(self):
        assert build_notification_id(NotificationType.SCHEDULED_ITEM, 12) == "scheduled-12"

    def test_parse_keeps_dashes_in_record_id(self):
        record_id = "6f1c2a9e-0b7d-4c55-9a1e-2b3c4d5e6f70"
        assert parse_notification_id(f"message-{record_id}") == (NotificationType.MESSAGE, record_id)

    def test_parse_unknown_prefix_is_system(self):
        assert parse_notification_id("welcome-1") == (NotificationType.SYSTEM, None)

    def test_parse_without_dash_is_system(self):
        assert parse_notification_id("welcome") == (NotificationType.SYSTEM, None)

    def test_parse_material(self):
        assert parse_notification_id("material-9") == (NotificationType.MATERIAL, "9")


class TestNotificationItem:

    def _item(self, **overrides):
        values = dict(
            id="message-5",
            type=NotificationType.MESSAGE,
            title="Trip",
            message="Bring lunch",
            timestamp=datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc),
            data={"id": 5},
            priority=Priority.NORMAL,
            category="Communication",
            icon="message",
            color="text-purple-600",
        )
        values.update(overrides)
        return NotificationItem(**values)

    def test_source_id_from_data(self):
        assert self._item().source_id == "5"

    def test_source_id_from_prefix_when_data_missing(self):
        assert self._item(data={}).source_id == "5"

    def test_system_item_has_no_source_id(self):
        item = self._item(id="system-welcome", type=NotificationType.SYSTEM, data={"id": 1})
        assert item.source_id is None

    def test_dict_round_trip_keeps_fields(self):
        item = self._item(read=True, priority=Priority.HIGH)
        restored = NotificationItem.from_dict(item.to_dict())
        assert restored == item
