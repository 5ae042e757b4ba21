from schoolfeed.models.notification import (
    NotificationType,
    Priority,
    NotificationItem,
    BulkDeleteResult,
    FeedFlags,
)

__all__ = [
    "NotificationType",
    "Priority",
    "NotificationItem",
    "BulkDeleteResult",
    "FeedFlags",
]
