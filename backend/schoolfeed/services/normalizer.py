"""
Item Normalizer - turns raw source records into NotificationItems

Pure functions, no I/O. Each source type has one normalizer; dispatch goes
through `_NORMALIZERS`, keyed by the closed NotificationType tag.

Missing nested fields (e.g. a scheduled item without a subject) become empty
strings. A record whose feed timestamp cannot be parsed raises
MalformedRecordError so the caller can skip just that record.
"""

import math
from datetime import datetime, timezone
from typing import AbstractSet, Any, Callable, Dict, Optional

from schoolfeed.core.exceptions import MalformedRecordError, UnknownNotificationTypeError
from schoolfeed.models.notification import (
    NotificationItem,
    NotificationType,
    Priority,
    build_notification_id,
    display_for,
)

SECONDS_PER_DAY = 24 * 60 * 60

TEST_COLOR = "text-red-600"
ASSIGNMENT_COLOR = "text-blue-600"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 value into an aware datetime (naive values are UTC)"""
    if isinstance(value, datetime):
        parsed = value
    else:
        if value is None or value == "":
            raise MalformedRecordError("Missing timestamp")
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise MalformedRecordError(f"Invalid timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_timestamp(value: Any) -> Optional[datetime]:
    try:
        return parse_timestamp(value)
    except MalformedRecordError:
        return None


def priority_from_date(target: Optional[datetime], now: datetime) -> Priority:
    """
    Priority of a date-bearing item from whole days (ceiling) until its date.

    <= 1 day urgent, <= 3 high, <= 7 normal, otherwise low. Past dates are
    urgent; items without a usable date are low.
    """
    if target is None:
        return Priority.LOW
    diff_days = math.ceil((target - now).total_seconds() / SECONDS_PER_DAY)
    if diff_days <= 1:
        return Priority.URGENT
    if diff_days <= 3:
        return Priority.HIGH
    if diff_days <= 7:
        return Priority.NORMAL
    return Priority.LOW


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _subject_name(record: Dict[str, Any]) -> str:
    subject = record.get("subject")
    if isinstance(subject, dict):
        return _text(subject.get("name"))
    return ""


def _normalize_message(record: Dict[str, Any], now: datetime) -> NotificationItem:
    display = display_for(NotificationType.MESSAGE)
    return NotificationItem(
        id=build_notification_id(NotificationType.MESSAGE, record.get("id")),
        type=NotificationType.MESSAGE,
        title=_text(record.get("title")),
        message=_text(record.get("content")),
        data=record,
        timestamp=parse_timestamp(record.get("sent_at")),
        priority=Priority.NORMAL,
        category=display.category,
        icon=display.icon,
        color=display.color,
    )


def _normalize_scheduled_item(record: Dict[str, Any], now: datetime) -> NotificationItem:
    display = display_for(NotificationType.SCHEDULED_ITEM)
    is_test = record.get("kind") == "test"
    due = _optional_timestamp(record.get("due_date"))
    due_text = due.strftime("%d/%m/%Y") if due else ""
    return NotificationItem(
        id=build_notification_id(NotificationType.SCHEDULED_ITEM, record.get("id")),
        type=NotificationType.SCHEDULED_ITEM,
        title=f"{'Test' if is_test else 'Assignment'}: {record.get('title') or ''}",
        message=f"Date: {due_text} - {_subject_name(record)}",
        data=record,
        timestamp=parse_timestamp(record.get("created_at")),
        priority=priority_from_date(due, now),
        category=display.category,
        icon=display.icon,
        color=TEST_COLOR if is_test else ASSIGNMENT_COLOR,
    )


def _normalize_material(record: Dict[str, Any], now: datetime) -> NotificationItem:
    display = display_for(NotificationType.MATERIAL)
    kind = _text(record.get("kind"))
    return NotificationItem(
        id=build_notification_id(NotificationType.MATERIAL, record.get("id")),
        type=NotificationType.MATERIAL,
        title=f"New material: {record.get('title') or ''}",
        message=f"{kind.upper()} - {_subject_name(record)}",
        data=record,
        timestamp=parse_timestamp(record.get("created_at")),
        priority=Priority.NORMAL,
        category=display.category,
        icon=display.icon,
        color=display.color,
    )


_NORMALIZERS: Dict[NotificationType, Callable[[Dict[str, Any], datetime], NotificationItem]] = {
    NotificationType.MESSAGE: _normalize_message,
    NotificationType.SCHEDULED_ITEM: _normalize_scheduled_item,
    NotificationType.MATERIAL: _normalize_material,
}


def normalize_record(
    source_type: NotificationType,
    record: Dict[str, Any],
    now: datetime,
    read_ids: AbstractSet[str] = frozenset(),
) -> NotificationItem:
    """
    Normalize one raw record of `source_type`.

    Args:
        source_type: Collection the record came from
        record: Raw source record, kept as the item's `data`
        now: Reference instant for priority computation
        read_ids: Read-state ids used to seed the `read` flag

    Raises:
        MalformedRecordError: record id or feed timestamp unusable
        UnknownNotificationTypeError: no normalizer for `source_type`
    """
    normalizer = _NORMALIZERS.get(source_type)
    if normalizer is None:
        raise UnknownNotificationTypeError(source_type)
    if record.get("id") in (None, ""):
        raise MalformedRecordError("Missing record id", field="id")
    item = normalizer(record, now)
    item.read = item.id in read_ids
    return item
