from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from schoolfeed.models.notification import NotificationItem, NotificationType, Priority


# ==================== Feed Schemas ====================

class NotificationResponse(BaseModel):
    """One published feed entry"""
    id: str
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    read: bool
    priority: Priority
    category: str
    icon: str
    color: str

    @classmethod
    def from_item(cls, item: NotificationItem) -> "NotificationResponse":
        return cls(
            id=item.id,
            type=item.type,
            title=item.title,
            message=item.message,
            data=item.data,
            timestamp=item.timestamp,
            read=item.read,
            priority=item.priority,
            category=item.category,
            icon=item.icon,
            color=item.color,
        )


class FeedFlagsResponse(BaseModel):
    enabled: bool
    sync: bool


class FeedResponse(BaseModel):
    """Published feed snapshot"""
    notifications: List[NotificationResponse]
    unread_count: int
    loading: bool
    flags: FeedFlagsResponse


# ==================== Mutation Schemas ====================

class BulkDeleteRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class BulkDeleteResponse(BaseModel):
    success_ids: List[str]
    failed_ids: List[str]


class SwitchUserRequest(BaseModel):
    """New identity for the caller's session"""
    user_id: str = Field(..., min_length=1)


class DeleteResponse(BaseModel):
    success: bool


class MetricsResponse(BaseModel):
    last_refresh: Optional[datetime] = None
    total_refreshes: int
    suppressed_updates: int
    adaptive_delay: float
