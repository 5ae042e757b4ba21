"""
Notification feed domain types.

Every notification carries a closed `NotificationType` tag. Per-type display
metadata lives in `TYPE_DISPLAY`, which must cover every member of the enum;
the check at the bottom of this module fails the import otherwise.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from schoolfeed.core.exceptions import UnknownNotificationTypeError


class NotificationType(str, Enum):
    """Source a notification was built from"""
    MESSAGE = "message"
    SCHEDULED_ITEM = "scheduled_item"
    MATERIAL = "material"
    SYSTEM = "system"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


@dataclass(frozen=True)
class TypeDisplay:
    """Static display metadata for one notification type"""
    id_prefix: str
    category: str
    icon: str
    color: str


TYPE_DISPLAY: Dict[NotificationType, TypeDisplay] = {
    NotificationType.MESSAGE: TypeDisplay("message", "Communication", "message", "text-purple-600"),
    NotificationType.SCHEDULED_ITEM: TypeDisplay("scheduled", "Agenda", "calendar", "text-blue-600"),
    NotificationType.MATERIAL: TypeDisplay("material", "Materials", "file", "text-green-600"),
    NotificationType.SYSTEM: TypeDisplay("system", "System", "settings", "text-gray-600"),
}

# Types backed by a source collection, in fetch order
SOURCE_TYPES: Tuple[NotificationType, ...] = (
    NotificationType.MESSAGE,
    NotificationType.SCHEDULED_ITEM,
    NotificationType.MATERIAL,
)


def display_for(notification_type: NotificationType) -> TypeDisplay:
    try:
        return TYPE_DISPLAY[notification_type]
    except KeyError:
        raise UnknownNotificationTypeError(notification_type) from None


def build_notification_id(notification_type: NotificationType, source_id: Any) -> str:
    """Feed id for a source record: `<prefix>-<record id>`"""
    return f"{display_for(notification_type).id_prefix}-{source_id}"


def parse_notification_id(notification_id: str) -> Tuple[NotificationType, Optional[str]]:
    """
    Split a feed id into its type and source record id.

    Record ids may themselves contain dashes (UUIDs), so only the first
    dash separates the prefix. Ids without a known prefix are local
    (system) notifications with no source record.
    """
    prefix, sep, rest = notification_id.partition("-")
    if not sep or not prefix:
        return NotificationType.SYSTEM, None
    notification_type = _TYPE_BY_PREFIX.get(prefix)
    if notification_type is None:
        return NotificationType.SYSTEM, None
    return notification_type, rest or None


@dataclass
class NotificationItem:
    """One entry of the unified feed. Treated as immutable once published."""
    id: str
    type: NotificationType
    title: str
    message: str
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)
    read: bool = False
    priority: Priority = Priority.NORMAL
    category: str = ""
    icon: str = ""
    color: str = ""

    @property
    def source_id(self) -> Optional[str]:
        """Id of the originating source record, if any"""
        if self.type is NotificationType.SYSTEM:
            return None
        record_id = self.data.get("id") if self.data else None
        if record_id is not None:
            return str(record_id)
        return parse_notification_id(self.id)[1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "read": self.read,
            "priority": self.priority.value,
            "category": self.category,
            "icon": self.icon,
            "color": self.color,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "NotificationItem":
        return cls(
            id=payload["id"],
            type=NotificationType(payload["type"]),
            title=payload.get("title", ""),
            message=payload.get("message", ""),
            timestamp=datetime.fromisoformat(payload["timestamp"]),
            data=payload.get("data") or {},
            read=bool(payload.get("read", False)),
            priority=Priority(payload.get("priority", Priority.NORMAL.value)),
            category=payload.get("category", ""),
            icon=payload.get("icon", ""),
            color=payload.get("color", ""),
        )


@dataclass
class BulkDeleteResult:
    """Outcome of one bulk delete; only success_ids are ever applied to state"""
    success_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"success_ids": list(self.success_ids), "failed_ids": list(self.failed_ids)}


@dataclass
class FeedFlags:
    """Feature flags: `enabled` gates the whole feed, `sync` gates live recomputation"""
    enabled: bool = True
    sync: bool = True


_TYPE_BY_PREFIX: Dict[str, NotificationType] = {
    display.id_prefix: notification_type
    for notification_type, display in TYPE_DISPLAY.items()
}

_missing_display = set(NotificationType) - set(TYPE_DISPLAY)
if _missing_display:
    raise RuntimeError(f"TYPE_DISPLAY is missing entries for: {sorted(t.value for t in _missing_display)}")
