"""
Custom Exceptions for SchoolFeed
================================

Raised inside adapters, stores and normalizers. The feed engine catches
them at the narrowest scope; none of them crosses the service boundary.

Usage:
    from schoolfeed.core.exceptions import SourceFetchError

    try:
        records = await adapter.list(NotificationType.MESSAGE)
    except SourceFetchError as e:
        logger.warning(f"[NotificationFeed] fetch failed: {e}")
"""

from typing import Optional, Any, Dict


class SchoolFeedError(Exception):
    """Base exception for all SchoolFeed errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# ============================================
# Source backend errors
# ============================================

class SourceError(SchoolFeedError):
    """Source backend call failed"""

    def __init__(self, message: str, source: Optional[str] = None, code: str = "SOURCE_ERROR"):
        super().__init__(message, code=code, details={"source": source} if source else {})


class SourceFetchError(SourceError):
    """Listing a source collection failed"""

    def __init__(self, source: str, message: str = "Fetch failed"):
        super().__init__(f"{source}: {message}", source=source, code="SOURCE_FETCH_FAILED")


class SourceDeleteError(SourceError):
    """Deleting a source record failed"""

    def __init__(self, source: str, record_id: str, message: str = "Delete failed"):
        super().__init__(f"{source}/{record_id}: {message}", source=source, code="SOURCE_DELETE_FAILED")
        self.details["record_id"] = record_id


# ============================================
# Data errors
# ============================================

class MalformedRecordError(SchoolFeedError):
    """A source record cannot be turned into a notification"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="MALFORMED_RECORD", details=details)


class UnknownNotificationTypeError(SchoolFeedError):
    """Notification type has no normalizer or display entry"""

    def __init__(self, notification_type: Any):
        super().__init__(
            f"Unknown notification type: {notification_type!r}",
            code="UNKNOWN_NOTIFICATION_TYPE",
            details={"type": str(notification_type)}
        )


# ============================================
# Persistence errors
# ============================================

class PersistenceError(SchoolFeedError):
    """Key-value persistence failed"""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message, code="PERSISTENCE_ERROR", details={"key": key} if key else {})
